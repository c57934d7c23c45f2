"""Document modules: clients, quotes, jobs and invoices."""

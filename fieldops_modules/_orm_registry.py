"""
Module ORM registry.

Imports every ORM module so ``Base.metadata`` holds the full schema
before ``create_tables()`` runs. Idempotent.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``fieldops_modules.*.orm`` module."""
    import fieldops_kernel.models  # noqa: F401
    # fmt: off
    import fieldops_modules.clients.orm  # noqa: F401
    import fieldops_modules.quotes.orm  # noqa: F401
    import fieldops_modules.jobs.orm  # noqa: F401
    import fieldops_modules.invoices.orm  # noqa: F401
    # fmt: on

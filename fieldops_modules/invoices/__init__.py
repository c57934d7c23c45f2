"""Invoices, credit notes and the payments recorded against them."""

from fieldops_modules.invoices.models import Invoice, InvoiceStatus, Payment
from fieldops_modules.invoices.service import InvoiceService
from fieldops_modules.invoices.workflows import INVOICE_WORKFLOW

__all__ = ["INVOICE_WORKFLOW", "Invoice", "InvoiceService", "InvoiceStatus", "Payment"]

"""Quotes: priced proposals sent to clients for approval."""

from fieldops_modules.quotes.models import Quote, QuoteStatus
from fieldops_modules.quotes.service import QuoteService
from fieldops_modules.quotes.workflows import QUOTE_WORKFLOW

__all__ = ["QUOTE_WORKFLOW", "Quote", "QuoteService", "QuoteStatus"]

"""
Invoice Workflow.

    Draft --send--> Sent --mark_unpaid--> Unpaid
    Draft | Sent | Unpaid --pay--> Paid

``pay`` fires when recorded payments and credit notes bring the balance
to zero, or by hand (the legacy mark-as-paid flow). Credit notes are
issued in the Sent state and never move again.
"""

from fieldops_kernel.domain.workflow import Guard, Transition, Workflow
from fieldops_kernel.logging_config import get_logger
from fieldops_modules.invoices.models import InvoiceStatus

logger = get_logger("modules.invoices.workflows")

DRAFT = InvoiceStatus.DRAFT.value
SENT = InvoiceStatus.SENT.value
UNPAID = InvoiceStatus.UNPAID.value
PAID = InvoiceStatus.PAID.value

BALANCE_ZERO = Guard(
    name="balance_zero",
    description="Invoice balance is zero, or the invoice is marked paid by hand",
)

NOT_CREDIT_NOTE = Guard(
    name="not_credit_note",
    description="Credit notes cannot be paid, credited or re-sent",
)

INVOICE_WORKFLOW = Workflow(
    name="invoice",
    description="Client invoice lifecycle",
    initial_state=DRAFT,
    states=(DRAFT, SENT, UNPAID, PAID),
    transitions=(
        Transition(DRAFT, SENT, action="send", guard=NOT_CREDIT_NOTE),
        Transition(SENT, UNPAID, action="mark_unpaid", guard=NOT_CREDIT_NOTE),
        Transition(DRAFT, PAID, action="pay", guard=BALANCE_ZERO),
        Transition(SENT, PAID, action="pay", guard=BALANCE_ZERO),
        Transition(UNPAID, PAID, action="pay", guard=BALANCE_ZERO),
    ),
    terminal_states=(PAID,),
)

logger.info(
    "invoice_workflow_registered",
    extra={
        "workflow_name": INVOICE_WORKFLOW.name,
        "state_count": len(INVOICE_WORKFLOW.states),
        "transition_count": len(INVOICE_WORKFLOW.transitions),
    },
)

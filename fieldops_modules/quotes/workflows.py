"""
Quote Workflow.

    Draft --send--> Awaiting Response --approve--> Approved --convert--> Converted
                          |    ^
                   decline|    |send
                          v    |
                    Changes Requested

    Awaiting Response --archive--> Archived
    Awaiting Response | Changes Requested | Approved --revert--> Draft

Archiving is only possible once the quote has been sent and is still
awaiting a response; Draft and Approved quotes are rejected.
"""

from fieldops_kernel.domain.workflow import Guard, Transition, Workflow
from fieldops_kernel.logging_config import get_logger
from fieldops_modules.quotes.models import QuoteStatus

logger = get_logger("modules.quotes.workflows")

DRAFT = QuoteStatus.DRAFT.value
AWAITING = QuoteStatus.AWAITING_RESPONSE.value
CHANGES = QuoteStatus.CHANGES_REQUESTED.value
APPROVED = QuoteStatus.APPROVED.value
CONVERTED = QuoteStatus.CONVERTED.value
ARCHIVED = QuoteStatus.ARCHIVED.value

SENT_BEFORE_ARCHIVE = Guard(
    name="sent_before_archive",
    description="Quote must be awaiting a response before it can be archived",
)

QUOTE_WORKFLOW = Workflow(
    name="quote",
    description="Client quote lifecycle",
    initial_state=DRAFT,
    states=(DRAFT, AWAITING, CHANGES, APPROVED, CONVERTED, ARCHIVED),
    transitions=(
        Transition(DRAFT, AWAITING, action="send"),
        Transition(CHANGES, AWAITING, action="send"),
        Transition(AWAITING, APPROVED, action="approve"),
        Transition(AWAITING, CHANGES, action="decline"),
        Transition(APPROVED, CONVERTED, action="convert"),
        Transition(AWAITING, ARCHIVED, action="archive", guard=SENT_BEFORE_ARCHIVE),
        Transition(AWAITING, DRAFT, action="revert"),
        Transition(CHANGES, DRAFT, action="revert"),
        Transition(APPROVED, DRAFT, action="revert"),
    ),
    terminal_states=(CONVERTED, ARCHIVED),
)

# States in which pricing and content may still be edited
EDITABLE_STATES = frozenset({DRAFT, AWAITING, CHANGES})

logger.info(
    "quote_workflow_registered",
    extra={
        "workflow_name": QUOTE_WORKFLOW.name,
        "state_count": len(QUOTE_WORKFLOW.states),
        "transition_count": len(QUOTE_WORKFLOW.transitions),
    },
)

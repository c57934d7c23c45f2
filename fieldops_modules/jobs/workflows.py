"""
Job Workflow.

    Unscheduled | Draft --schedule--> Scheduled --start--> In Progress
    Scheduled --unschedule--> Unscheduled
    Scheduled | In Progress --complete--> Completed --reopen--> In Progress

Completing an already Completed job is accepted and changes nothing; it
lets a repeated completion re-drive the (idempotent) invoice handler.
"""

from fieldops_kernel.domain.workflow import Guard, Transition, Workflow
from fieldops_kernel.logging_config import get_logger
from fieldops_modules.jobs.models import JobStatus

logger = get_logger("modules.jobs.workflows")

UNSCHEDULED = JobStatus.UNSCHEDULED.value
DRAFT = JobStatus.DRAFT.value
SCHEDULED = JobStatus.SCHEDULED.value
IN_PROGRESS = JobStatus.IN_PROGRESS.value
COMPLETED = JobStatus.COMPLETED.value

NO_EXISTING_INVOICE = Guard(
    name="no_existing_invoice",
    description="Completion invoices the job only if no non-credit invoice references it",
)

JOB_WORKFLOW = Workflow(
    name="job",
    description="Field job lifecycle",
    initial_state=UNSCHEDULED,
    states=(UNSCHEDULED, DRAFT, SCHEDULED, IN_PROGRESS, COMPLETED),
    transitions=(
        Transition(UNSCHEDULED, SCHEDULED, action="schedule"),
        Transition(DRAFT, SCHEDULED, action="schedule"),
        Transition(SCHEDULED, UNSCHEDULED, action="unschedule"),
        Transition(SCHEDULED, IN_PROGRESS, action="start"),
        Transition(SCHEDULED, COMPLETED, action="complete", guard=NO_EXISTING_INVOICE),
        Transition(IN_PROGRESS, COMPLETED, action="complete", guard=NO_EXISTING_INVOICE),
        Transition(COMPLETED, COMPLETED, action="complete", guard=NO_EXISTING_INVOICE),
        Transition(COMPLETED, IN_PROGRESS, action="reopen"),
    ),
)

logger.info(
    "job_workflow_registered",
    extra={
        "workflow_name": JOB_WORKFLOW.name,
        "state_count": len(JOB_WORKFLOW.states),
        "transition_count": len(JOB_WORKFLOW.transitions),
    },
)

"""
Workflow definition tests.

Exhaustively checks which actions each lifecycle allows from each
state, and that the Workflow value object rejects broken definitions.
"""

import pytest

from fieldops_kernel.domain.workflow import Transition, Workflow
from fieldops_modules.invoices.workflows import INVOICE_WORKFLOW
from fieldops_modules.jobs.workflows import JOB_WORKFLOW
from fieldops_modules.quotes.workflows import QUOTE_WORKFLOW

ALL_WORKFLOWS = [
    ("Quote", QUOTE_WORKFLOW),
    ("Job", JOB_WORKFLOW),
    ("Invoice", INVOICE_WORKFLOW),
]


# =============================================================================
# Structural checks
# =============================================================================


class TestWorkflowStructure:

    @pytest.mark.parametrize("name,workflow", ALL_WORKFLOWS)
    def test_every_state_reachable_from_an_entry_state(self, name, workflow):
        # Entry states: the initial one plus any with no inbound transition
        targets = {t.to_state for t in workflow.transitions}
        entries = {workflow.initial_state} | {s for s in workflow.states if s not in targets}
        reached = set(entries)
        frontier = list(entries)
        while frontier:
            state = frontier.pop()
            for t in workflow.transitions:
                if t.from_state == state and t.to_state not in reached:
                    reached.add(t.to_state)
                    frontier.append(t.to_state)

        assert reached == set(workflow.states), f"{name} has unreachable states"

    @pytest.mark.parametrize("name,workflow", ALL_WORKFLOWS)
    def test_terminal_states_have_no_exits(self, name, workflow):
        for state in workflow.terminal_states:
            exits = [
                t for t in workflow.transitions
                if t.from_state == state and t.to_state != state
            ]
            assert exits == [], f"{name} terminal state {state} has exits"

    def test_undeclared_state_rejected(self):
        with pytest.raises(ValueError, match="undeclared state"):
            Workflow(
                name="broken",
                description="",
                initial_state="A",
                states=("A",),
                transitions=(Transition("A", "B", action="go"),),
            )

    def test_undeclared_initial_state_rejected(self):
        with pytest.raises(ValueError, match="initial state"):
            Workflow(name="broken", description="", initial_state="X", states=("A",), transitions=())


# =============================================================================
# Quote lifecycle
# =============================================================================


class TestQuoteWorkflow:

    @pytest.mark.parametrize("state,actions", [
        ("Draft", ("send",)),
        ("Awaiting Response", ("approve", "decline", "archive", "revert")),
        ("Changes Requested", ("send", "revert")),
        ("Approved", ("convert", "revert")),
        ("Converted", ()),
        ("Archived", ()),
    ])
    def test_allowed_actions(self, state, actions):
        assert set(QUOTE_WORKFLOW.allowed_actions(state)) == set(actions)

    def test_archive_only_from_awaiting_response(self):
        assert QUOTE_WORKFLOW.find_transition("Draft", "archive") is None
        assert QUOTE_WORKFLOW.find_transition("Approved", "archive") is None
        transition = QUOTE_WORKFLOW.find_transition("Awaiting Response", "archive")
        assert transition.to_state == "Archived"
        assert transition.guard is not None

    def test_resend_from_awaiting_not_declared(self):
        assert QUOTE_WORKFLOW.find_transition("Awaiting Response", "send") is None

    def test_approve_after_conversion_not_declared(self):
        assert QUOTE_WORKFLOW.find_transition("Converted", "approve") is None


# =============================================================================
# Job lifecycle
# =============================================================================


class TestJobWorkflow:

    def test_complete_from_scheduled_and_in_progress(self):
        for state in ("Scheduled", "In Progress"):
            transition = JOB_WORKFLOW.find_transition_to(state, "Completed")
            assert transition is not None
            assert transition.action == "complete"

    def test_complete_is_repeatable(self):
        transition = JOB_WORKFLOW.find_transition_to("Completed", "Completed")

        assert transition is not None
        assert transition.from_state == transition.to_state

    @pytest.mark.parametrize("state", ["Unscheduled", "Draft"])
    @pytest.mark.parametrize("target", ["In Progress", "Completed"])
    def test_unscheduled_jobs_must_be_scheduled_first(self, state, target):
        assert JOB_WORKFLOW.find_transition_to(state, target) is None
        assert JOB_WORKFLOW.find_transition_to(state, "Scheduled").action == "schedule"

    def test_reopen_completed(self):
        assert JOB_WORKFLOW.find_transition("Completed", "reopen").to_state == "In Progress"


# =============================================================================
# Invoice lifecycle
# =============================================================================


class TestInvoiceWorkflow:

    @pytest.mark.parametrize("state", ["Draft", "Sent", "Unpaid"])
    def test_pay_from_open_states(self, state):
        assert INVOICE_WORKFLOW.find_transition(state, "pay").to_state == "Paid"

    def test_paid_is_terminal(self):
        assert INVOICE_WORKFLOW.allowed_actions("Paid") == ()

    def test_unpaid_only_after_sent(self):
        assert INVOICE_WORKFLOW.find_transition("Draft", "mark_unpaid") is None
        assert INVOICE_WORKFLOW.find_transition("Sent", "mark_unpaid").to_state == "Unpaid"

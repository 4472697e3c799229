"""
Tests for the Workflow Engine.

These tests verify:
1. RUN: executions start completed with the first escalation deadline armed
2. TRIGGER: event workflows start only when event type and conditions match
3. ESCALATE: due executions climb one rung per deadline, never past the ladder
4. RESOLVE: resolution closes the open step and is idempotent
"""

from datetime import timedelta
from uuid import UUID, uuid4

import pytest
from sqlalchemy import func, select, update

from pulse_dispatch.models import (
    EscalationHistory,
    ExecutionStatus,
    TriggerType,
    UserNotification,
    Workflow,
    WorkflowExecution,
    as_utc,
    utc_now,
)
from pulse_dispatch.services.workflow_engine import (
    AUTO_ESCALATION_REASON,
    DatabaseWorkflowRunner,
    ExecutionNotFoundError,
    WorkflowEngine,
    WorkflowNotFoundError,
    WorkflowRunner,
    evaluate_condition,
)


# =============================================================================
# FIXTURES
# =============================================================================


MODERATOR_ID = uuid4()
SUPERVISOR_ID = uuid4()


class RecordingRunner(WorkflowRunner):
    """Runner double that records starts instead of executing anything."""

    def __init__(self, failing: set[UUID] | None = None):
        self.started: list[tuple[UUID, dict]] = []
        self.failing = failing or set()

    async def start(self, workflow_id, payload):
        if workflow_id in self.failing:
            raise RuntimeError("runner unavailable")
        self.started.append((workflow_id, payload))
        return uuid4()


class InvalidActionRunner(DatabaseWorkflowRunner):
    """Database runner whose actions for one workflow hit a NOT NULL violation."""

    def __init__(self, session, settings, failing_workflow_id):
        super().__init__(session, settings)
        self.failing_workflow_id = failing_workflow_id

    async def _run_actions(self, workflow, execution, payload):
        if workflow.id == self.failing_workflow_id:
            self._session.add(UserNotification(user_id=None, title="broken", message="broken"))
            await self._session.flush()
        await super()._run_actions(workflow, execution, payload)


class FailingAfterClaimEngine(WorkflowEngine):
    """Engine that hits a database error after one execution's conditional update."""

    def __init__(self, session, settings, failing_execution_id):
        super().__init__(session, settings)
        self.failing_execution_id = failing_execution_id

    async def _escalate(self, execution, now):
        escalated = await super()._escalate(execution, now)
        if execution.id == self.failing_execution_id:
            self._session.add(UserNotification(user_id=None, title="broken", message="broken"))
            await self._session.flush()
        return escalated


@pytest.fixture
def make_workflow(session):
    async def _make_workflow(
        name: str = "Petition review",
        trigger_config: dict | None = None,
        escalation_rules: list | None = None,
        actions: list | None = None,
        priority: int = 100,
        is_active: bool = True,
    ) -> Workflow:
        workflow = Workflow(
            name=name,
            trigger_type=TriggerType.EVENT,
            trigger_config=trigger_config or {"event_type": "petition_flagged"},
            actions=actions or [],
            escalation_rules=escalation_rules if escalation_rules is not None else [
                {"escalated_to": [str(MODERATOR_ID)], "timeout_hours": 1},
                {"escalated_to": [str(SUPERVISOR_ID)], "timeout_hours": 1, "reason": "No moderator response"},
            ],
            priority=priority,
            is_active=is_active,
        )
        session.add(workflow)
        await session.flush()
        return workflow

    return _make_workflow


@pytest.fixture
def make_due_execution(session):
    async def _make_due_execution(
        workflow: Workflow,
        level: int = 0,
        status: ExecutionStatus = ExecutionStatus.COMPLETED,
    ) -> WorkflowExecution:
        execution = WorkflowExecution(
            workflow=workflow,
            trigger_data={"petition_id": "p-1"},
            status=status,
            escalation_level=level,
            next_escalation_at=utc_now() - timedelta(minutes=5),
        )
        session.add(execution)
        await session.flush()
        return execution

    return _make_due_execution


async def history_for(session, execution_id) -> list[EscalationHistory]:
    result = await session.execute(
        select(EscalationHistory)
        .where(EscalationHistory.execution_id == execution_id)
        .order_by(EscalationHistory.escalation_level)
    )
    return list(result.scalars().all())


# =============================================================================
# TEST: EXECUTE
# =============================================================================


class TestExecuteWorkflow:

    async def test_execution_completes_with_first_deadline(self, session, settings, make_workflow):
        workflow = await make_workflow(escalation_rules=[
            {"escalated_to": [str(MODERATOR_ID)], "timeout_hours": 4},
        ])
        engine = WorkflowEngine(session, settings)

        before = utc_now()
        execution_id = await engine.execute_workflow(workflow.id, {"petition_id": "p-9"})

        execution = await session.get(WorkflowExecution, execution_id)
        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.escalation_level == 0
        assert execution.trigger_data == {"petition_id": "p-9"}
        deadline = as_utc(execution.next_escalation_at)
        assert before + timedelta(hours=4) <= deadline <= utc_now() + timedelta(hours=4)

    async def test_without_rules_nothing_is_armed(self, session, settings, make_workflow):
        workflow = await make_workflow(escalation_rules=[])

        execution_id = await WorkflowEngine(session, settings).execute_workflow(workflow.id)

        execution = await session.get(WorkflowExecution, execution_id)
        assert execution.next_escalation_at is None

    async def test_notify_actions_write_rendered_inbox_items(self, session, settings, make_workflow):
        workflow = await make_workflow(actions=[
            {
                "type": "notify",
                "user_ids": [str(MODERATOR_ID), "not-a-uuid"],
                "title": "Petition flagged: {{ petition_title }}",
                "message": "{{ report_count }} reports received",
            },
            {"type": "webhook", "url": "https://example.cm/hook"},
        ])

        await WorkflowEngine(session, settings).execute_workflow(
            workflow.id, {"petition_title": "Road repairs", "report_count": 5}
        )

        items = (await session.execute(select(UserNotification))).scalars().all()
        assert len(items) == 1
        assert items[0].user_id == MODERATOR_ID
        assert items[0].title == "Petition flagged: Road repairs"
        assert items[0].message == "5 reports received"

    async def test_unknown_or_inactive_workflow_raises(self, session, settings, make_workflow):
        engine = WorkflowEngine(session, settings)
        inactive = await make_workflow(is_active=False)

        with pytest.raises(WorkflowNotFoundError):
            await engine.execute_workflow(uuid4())
        with pytest.raises(WorkflowNotFoundError):
            await engine.execute_workflow(inactive.id)


# =============================================================================
# TEST: EVENT TRIGGERS
# =============================================================================


class TestTriggerEventWorkflows:

    async def test_matching_workflow_is_started(self, session, settings, make_workflow):
        workflow = await make_workflow(trigger_config={
            "event_type": "petition_flagged",
            "conditions": [{"field": "report_count", "operator": "greater_than", "value": 3}],
        })
        runner = RecordingRunner()
        engine = WorkflowEngine(session, settings, runner=runner)

        event = {"event_type": "petition_flagged", "report_count": 5}
        result = await engine.trigger_event_workflows(event)

        assert len(result.triggered) == 1
        assert result.triggered[0]["workflow_id"] == str(workflow.id)
        assert runner.started == [(workflow.id, event)]

    async def test_non_matching_events_are_ignored(self, session, settings, make_workflow):
        await make_workflow(trigger_config={
            "event_type": "petition_flagged",
            "conditions": [{"field": "report_count", "operator": "greater_than", "value": 3}],
        })
        runner = RecordingRunner()
        engine = WorkflowEngine(session, settings, runner=runner)

        await engine.trigger_event_workflows({"event_type": "petition_flagged", "report_count": 2})
        await engine.trigger_event_workflows({"event_type": "poll_created", "report_count": 10})

        assert runner.started == []

    async def test_workflows_run_in_ascending_priority(self, session, settings, make_workflow):
        late = await make_workflow(name="Late", priority=50)
        early = await make_workflow(name="Early", priority=1)
        runner = RecordingRunner()

        await WorkflowEngine(session, settings, runner=runner).trigger_event_workflows(
            {"event_type": "petition_flagged"}
        )

        assert [wf_id for wf_id, _ in runner.started] == [early.id, late.id]

    async def test_one_failing_workflow_does_not_stop_others(self, session, settings, make_workflow):
        broken = await make_workflow(name="Broken", priority=1)
        healthy = await make_workflow(name="Healthy", priority=2)
        runner = RecordingRunner(failing={broken.id})

        result = await WorkflowEngine(session, settings, runner=runner).trigger_event_workflows(
            {"event_type": "petition_flagged"}
        )

        assert [wf_id for wf_id, _ in runner.started] == [healthy.id]
        assert len(result.errors) == 1
        assert "runner unavailable" in result.errors[0]

    async def test_failed_start_leaves_no_partial_execution(self, session, settings, make_workflow):
        broken = await make_workflow(name="Broken", priority=1)
        healthy = await make_workflow(name="Healthy", priority=2)
        broken_id, healthy_id = broken.id, healthy.id
        runner = InvalidActionRunner(session, settings, failing_workflow_id=broken_id)

        result = await WorkflowEngine(session, settings, runner=runner).trigger_event_workflows(
            {"event_type": "petition_flagged"}
        )

        assert [t["workflow_id"] for t in result.triggered] == [str(healthy_id)]
        assert len(result.errors) == 1
        assert result.errors[0].startswith(f"Workflow {broken_id}:")

        executions = (await session.execute(select(WorkflowExecution))).scalars().all()
        assert [e.workflow_id for e in executions] == [healthy_id]
        assert executions[0].status == ExecutionStatus.COMPLETED

    async def test_unknown_operator_fails_closed_by_default(self, session, settings, make_workflow):
        await make_workflow(trigger_config={
            "event_type": "petition_flagged",
            "conditions": [{"field": "region", "operator": "starts_with", "value": "North"}],
        })
        runner = RecordingRunner()

        await WorkflowEngine(session, settings, runner=runner).trigger_event_workflows(
            {"event_type": "petition_flagged", "region": "Northwest"}
        )

        assert runner.started == []


class TestEvaluateCondition:

    @pytest.mark.parametrize(
        "actual, expected, matches",
        [
            (5, 5, True),
            (5, 5.0, True),
            ("5", 5, False),
            ("Littoral", "Littoral", True),
            (True, 1, False),
            (None, None, True),
        ],
    )
    def test_equals_is_strict(self, actual, expected, matches):
        condition = {"field": "value", "operator": "equals", "value": expected}
        assert evaluate_condition(condition, {"value": actual}) is matches

    @pytest.mark.parametrize(
        "actual, expected, matches",
        [
            (10, 3, True),
            ("7", 3, True),
            (2, "3", False),
            ("abc", 3, False),
            (None, 0, False),
        ],
    )
    def test_greater_than_coerces_numbers(self, actual, expected, matches):
        condition = {"field": "value", "operator": "greater_than", "value": expected}
        assert evaluate_condition(condition, {"value": actual}) is matches

    def test_contains(self):
        condition = {"field": "title", "operator": "contains", "value": "water"}

        assert evaluate_condition(condition, {"title": "Bamenda water crisis"}) is True
        assert evaluate_condition(condition, {"title": "Road repairs"}) is False
        assert evaluate_condition(condition, {}) is False

    def test_contains_on_lists_checks_membership(self):
        condition = {"field": "tags", "operator": "contains", "value": "health"}
        assert evaluate_condition(condition, {"tags": ["health", "water"]}) is True

    def test_dotted_field_path(self):
        condition = {"field": "petition.region", "operator": "equals", "value": "Centre"}
        assert evaluate_condition(condition, {"petition": {"region": "Centre"}}) is True
        assert evaluate_condition(condition, {"petition": "Centre"}) is False

    def test_unknown_operator_follows_flag(self):
        condition = {"field": "x", "operator": "regex", "value": ".*"}
        assert evaluate_condition(condition, {"x": 1}) is False
        assert evaluate_condition(condition, {"x": 1}, unknown_operator_passes=True) is True


# =============================================================================
# TEST: ESCALATION SWEEP
# =============================================================================


class TestProcessEscalations:

    async def test_two_rung_ladder(self, session, settings, make_workflow, make_due_execution):
        """A due execution climbs one rung per sweep and stops at the top."""
        workflow = await make_workflow()
        execution = await make_due_execution(workflow)
        engine = WorkflowEngine(session, settings)

        result = await engine.process_escalations()

        assert result.escalated == 1
        assert execution.escalation_level == 1
        assert execution.status == ExecutionStatus.ESCALATED
        remaining = as_utc(execution.next_escalation_at) - utc_now()
        assert timedelta(minutes=55) < remaining <= timedelta(hours=1)

        history = await history_for(session, execution.id)
        assert len(history) == 1
        assert history[0].escalation_level == 1
        assert history[0].escalation_reason == AUTO_ESCALATION_REASON
        assert history[0].escalated_to == [str(MODERATOR_ID)]

        # Sweeping again before the new deadline is a no-op
        again = await engine.process_escalations()
        assert again.escalated == 0
        assert execution.escalation_level == 1
        assert len(await history_for(session, execution.id)) == 1

        # Past the second deadline the execution reaches the top rung
        later = utc_now() + timedelta(hours=2)
        top = await engine.process_escalations(now=later)
        assert top.escalated == 1
        assert execution.escalation_level == 2
        assert execution.next_escalation_at is None

        # Nothing left to climb
        beyond = await engine.process_escalations(now=later + timedelta(days=7))
        assert beyond.escalated == 0
        assert execution.escalation_level == 2
        assert len(await history_for(session, execution.id)) == 2

    async def test_escalation_notifies_targets(self, session, settings, make_workflow, make_due_execution):
        workflow = await make_workflow()
        await make_due_execution(workflow)

        await WorkflowEngine(session, settings).process_escalations()

        items = (await session.execute(
            select(UserNotification).where(UserNotification.user_id == MODERATOR_ID)
        )).scalars().all()
        assert len(items) == 1
        assert items[0].notification_type == "workflow_escalation"
        assert "Petition review" in items[0].message
        assert items[0].data["escalation_level"] == 1

    async def test_stale_read_does_not_escalate_twice(
        self, session, settings, make_workflow, make_due_execution
    ):
        """A concurrent sweep already moved the row; the conditional update must miss."""
        workflow = await make_workflow()
        execution = await make_due_execution(workflow)

        await session.execute(
            update(WorkflowExecution)
            .where(WorkflowExecution.id == execution.id)
            .values(status=ExecutionStatus.ESCALATED, escalation_level=1)
            .execution_options(synchronize_session=False)
        )
        # In-memory copy still says level 0 / completed
        assert execution.escalation_level == 0

        engine = WorkflowEngine(session, settings)
        escalated = await engine._escalate(execution, utc_now())

        assert escalated is False
        assert await history_for(session, execution.id) == []
        assert execution.escalation_level == 1

    async def test_database_error_rolls_back_only_that_execution(
        self, session, settings, make_workflow, make_due_execution
    ):
        workflow = await make_workflow()
        broken = await make_due_execution(workflow)
        healthy = await make_due_execution(workflow)
        broken_id, healthy_id = broken.id, healthy.id
        engine = FailingAfterClaimEngine(session, settings, failing_execution_id=broken_id)

        result = await engine.process_escalations()

        assert result.escalated == 1
        assert result.escalated_execution_ids == [healthy_id]
        assert len(result.errors) == 1
        assert result.errors[0].startswith(f"Execution {broken_id}:")

        assert broken.status == ExecutionStatus.COMPLETED
        assert broken.escalation_level == 0
        assert broken.next_escalation_at is not None
        assert await history_for(session, broken_id) == []
        assert len(await history_for(session, healthy_id)) == 1

        moderator_items = await session.scalar(
            select(func.count())
            .select_from(UserNotification)
            .where(UserNotification.user_id == MODERATOR_ID)
        )
        assert moderator_items == 1

    async def test_exhausted_ladder_is_disarmed(self, session, settings, make_workflow, make_due_execution):
        workflow = await make_workflow(escalation_rules=[
            {"escalated_to": [str(MODERATOR_ID)], "timeout_hours": 1},
        ])
        execution = await make_due_execution(workflow, level=1, status=ExecutionStatus.ESCALATED)

        result = await WorkflowEngine(session, settings).process_escalations()

        assert result.escalated == 0
        assert result.skipped == 1
        assert execution.escalation_level == 1
        assert execution.next_escalation_at is None

    async def test_running_and_resolved_executions_are_not_swept(
        self, session, settings, make_workflow, make_due_execution
    ):
        workflow = await make_workflow()
        await make_due_execution(workflow, status=ExecutionStatus.RUNNING)
        await make_due_execution(workflow, status=ExecutionStatus.RESOLVED)

        result = await WorkflowEngine(session, settings).process_escalations()

        assert result.escalated == 0
        assert result.skipped == 0


# =============================================================================
# TEST: RESOLUTION
# =============================================================================


class TestResolveEscalation:

    async def test_resolve_closes_latest_step_and_is_idempotent(
        self, session, settings, make_workflow, make_due_execution
    ):
        workflow = await make_workflow()
        execution = await make_due_execution(workflow)
        engine = WorkflowEngine(session, settings)
        await engine.process_escalations()

        first = await engine.resolve_escalation(execution.id, "paul@camerpulse.cm", "Petition reviewed")

        assert first.status == ExecutionStatus.RESOLVED
        assert first.history_entry_id is not None
        assert execution.next_escalation_at is None
        resolved_at = execution.resolved_at

        entry = (await history_for(session, execution.id))[0]
        assert entry.resolved_by == "paul@camerpulse.cm"
        assert entry.resolution_notes == "Petition reviewed"
        assert entry.resolved_at is not None

        second = await engine.resolve_escalation(execution.id, "someone-else")

        assert second.status == ExecutionStatus.RESOLVED
        assert second.history_entry_id is None
        assert execution.resolved_at == resolved_at
        assert entry.resolved_by == "paul@camerpulse.cm"

    async def test_resolved_execution_leaves_the_ladder(
        self, session, settings, make_workflow, make_due_execution
    ):
        workflow = await make_workflow()
        execution = await make_due_execution(workflow)
        engine = WorkflowEngine(session, settings)
        await engine.resolve_escalation(execution.id)

        result = await engine.process_escalations(now=utc_now() + timedelta(days=1))

        assert result.escalated == 0
        count = await session.execute(select(func.count()).select_from(EscalationHistory))
        assert count.scalar_one() == 0

    async def test_unknown_execution_raises(self, session, settings):
        with pytest.raises(ExecutionNotFoundError):
            await WorkflowEngine(session, settings).resolve_escalation(uuid4())

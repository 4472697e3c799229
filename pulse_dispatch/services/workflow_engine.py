"""
Workflow Engine: condition triggers and the timed escalation ladder.

Key responsibilities:
1. Evaluate event-triggered workflows against incoming event data
2. Start executions through a pluggable WorkflowRunner
3. Sweep due executions up the escalation ladder (run by an external scheduler)
4. Resolve executions manually

Execution lifecycle:

    running -> completed -> escalated -> (escalated again | resolved)

An execution whose escalation_level equals the number of rules stays
escalated until someone resolves it.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.config import Settings, get_settings
from ..models import (
    EscalationHistory,
    ExecutionStatus,
    TriggerType,
    Workflow,
    WorkflowExecution,
    utc_now,
)
from .inbox import InboxService
from .templates import render_template


logger = logging.getLogger(__name__)

AUTO_ESCALATION_REASON = "Automatic escalation - timeout reached"


# =============================================================================
# EXCEPTIONS
# =============================================================================


class WorkflowError(Exception):
    """Base exception for workflow operations."""
    pass


class WorkflowNotFoundError(WorkflowError):
    """Workflow does not exist or is inactive."""
    pass


class ExecutionNotFoundError(WorkflowError):
    """Workflow execution does not exist."""
    pass


class InvalidWorkflowRequestError(WorkflowError):
    """Request is missing a required field or names an unknown action."""
    pass


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class EscalationRule:
    """One rung of the escalation ladder."""
    escalated_to: list[str]
    timeout_hours: float
    reason: str | None = None

    @classmethod
    def from_dict(cls, data: dict, default_timeout_hours: float) -> "EscalationRule":
        targets = data.get("escalated_to") or []
        if isinstance(targets, str):
            targets = [targets]
        return cls(
            escalated_to=[str(t) for t in targets],
            timeout_hours=float(data.get("timeout_hours") or default_timeout_hours),
            reason=data.get("reason"),
        )


@dataclass
class EscalationSweepResult:
    """Outcome of one escalation sweep."""
    escalated: int = 0
    skipped: int = 0
    escalated_execution_ids: list[UUID] = field(default_factory=list)
    failed_execution_ids: list[UUID] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class TriggerResult:
    """Outcome of evaluating event-triggered workflows."""
    workflows_evaluated: int = 0
    triggered: list[dict[str, str]] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class ResolutionResult:
    execution_id: UUID
    status: ExecutionStatus
    history_entry_id: UUID | None


# =============================================================================
# CONDITION EVALUATION
# =============================================================================


def _lookup(data: dict[str, Any], field_path: str) -> Any:
    """Resolve a dotted field path; missing segments yield None."""
    value: Any = data
    for part in str(field_path).split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _to_number(value: Any) -> float | None:
    if _is_number(value):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return None if math.isnan(number) else number


def evaluate_condition(
    condition: dict[str, Any],
    event_data: dict[str, Any],
    unknown_operator_passes: bool = False,
) -> bool:
    """
    Evaluate one {field, operator, value} condition against event data.

    - equals: strict match (numbers compare by value, everything else by type and value)
    - greater_than: numeric comparison; non-numeric operands fail
    - contains: substring match after string coercion (membership for lists)
    - anything else: governed by unknown_operator_passes
    """
    operator = condition.get("operator")
    expected = condition.get("value")
    actual = _lookup(event_data, condition.get("field", ""))

    if operator == "equals":
        if _is_number(actual) and _is_number(expected):
            return float(actual) == float(expected)
        return type(actual) is type(expected) and actual == expected

    if operator == "greater_than":
        left, right = _to_number(actual), _to_number(expected)
        if left is None or right is None:
            return False
        return left > right

    if operator == "contains":
        if actual is None:
            return False
        if isinstance(actual, (list, tuple)):
            return expected in actual
        return str(expected) in str(actual)

    logger.warning(f"Unknown condition operator {operator!r} on field {condition.get('field')!r}")
    return unknown_operator_passes


# =============================================================================
# WORKFLOW RUNNERS
# =============================================================================


class WorkflowRunner(ABC):
    """Starts a workflow execution and returns its id."""

    @abstractmethod
    async def start(self, workflow_id: UUID, payload: dict[str, Any]) -> UUID:
        pass


class DatabaseWorkflowRunner(WorkflowRunner):
    """
    Default runner: one execution row per start.

    Runs the workflow's `notify` actions, then leaves the execution
    `completed` with the first escalation deadline armed.
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self._session = session
        self._settings = settings or get_settings()
        self._inbox = InboxService(session)

    async def start(self, workflow_id: UUID, payload: dict[str, Any]) -> UUID:
        workflow = await self._session.get(Workflow, workflow_id)
        if workflow is None or not workflow.is_active:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found or inactive")

        execution = WorkflowExecution(
            workflow_id=workflow.id,
            trigger_data=payload,
            status=ExecutionStatus.RUNNING,
            escalation_level=0,
        )
        self._session.add(execution)
        await self._session.flush()

        await self._run_actions(workflow, execution, payload)

        rules = parse_escalation_rules(workflow, self._settings.default_escalation_timeout_hours)
        now = utc_now()
        execution.status = ExecutionStatus.COMPLETED
        execution.completed_at = now
        execution.next_escalation_at = (
            now + timedelta(hours=rules[0].timeout_hours) if rules else None
        )
        await self._session.flush()

        logger.info(f"Workflow {workflow.name} started execution {execution.id}")
        return execution.id

    async def _run_actions(
        self,
        workflow: Workflow,
        execution: WorkflowExecution,
        payload: dict[str, Any],
    ) -> None:
        for action in workflow.actions or []:
            action_type = action.get("type")
            if action_type != "notify":
                logger.info(f"Workflow {workflow.id}: skipping unsupported action {action_type!r}")
                continue

            for user_id in action.get("user_ids") or []:
                try:
                    recipient = UUID(str(user_id))
                except ValueError:
                    logger.warning(f"Workflow {workflow.id}: invalid notify target {user_id!r}")
                    continue
                await self._inbox.create(
                    user_id=recipient,
                    title=render_template(action.get("title") or workflow.name, payload),
                    message=render_template(action.get("message") or "", payload),
                    notification_type="workflow_action",
                    data={"workflow_id": str(workflow.id), "execution_id": str(execution.id)},
                )


def parse_escalation_rules(workflow: Workflow, default_timeout_hours: float) -> list[EscalationRule]:
    return [
        EscalationRule.from_dict(rule, default_timeout_hours)
        for rule in (workflow.escalation_rules or [])
        if isinstance(rule, dict)
    ]


# =============================================================================
# WORKFLOW ENGINE
# =============================================================================


class WorkflowEngine:
    """Trigger evaluation, escalation sweep and manual resolution."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        runner: WorkflowRunner | None = None,
    ):
        self._session = session
        self._settings = settings or get_settings()
        self._runner = runner or DatabaseWorkflowRunner(session, self._settings)
        self._inbox = InboxService(session)

    async def execute_workflow(
        self,
        workflow_id: UUID,
        trigger_data: dict[str, Any] | None = None,
    ) -> UUID:
        # A start that fails part-way leaves no half-built execution behind
        async with self._session.begin_nested():
            return await self._runner.start(workflow_id, trigger_data or {})

    # =========================================================================
    # EVENT TRIGGERS
    # =========================================================================

    async def trigger_event_workflows(self, event_data: dict[str, Any]) -> TriggerResult:
        """
        Start every active event-triggered workflow whose conditions match.

        Workflows are evaluated in ascending priority (lower number first).
        """
        result = TriggerResult()

        query = (
            select(Workflow)
            .where(
                Workflow.is_active.is_(True),
                Workflow.trigger_type == TriggerType.EVENT,
            )
            .order_by(Workflow.priority.asc(), Workflow.created_at.asc())
        )
        workflows = (await self._session.execute(query)).scalars().all()

        for workflow in workflows:
            workflow_id = workflow.id
            result.workflows_evaluated += 1
            try:
                if not self._matches(workflow, event_data):
                    continue
                execution_id = await self.execute_workflow(workflow_id, event_data)
                result.triggered.append({
                    "workflow_id": str(workflow_id),
                    "execution_id": str(execution_id),
                })
            except Exception as e:
                logger.error(f"Failed to trigger workflow {workflow_id}: {e}")
                result.errors.append(f"Workflow {workflow_id}: {e}")

        return result

    def _matches(self, workflow: Workflow, event_data: dict[str, Any]) -> bool:
        config = workflow.trigger_config or {}

        expected_event = config.get("event_type")
        if expected_event and expected_event != event_data.get("event_type"):
            return False

        return all(
            evaluate_condition(
                condition,
                event_data,
                unknown_operator_passes=self._settings.unknown_operator_passes,
            )
            for condition in config.get("conditions") or []
        )

    # =========================================================================
    # ESCALATION SWEEP
    # =========================================================================

    async def process_escalations(self, now: datetime | None = None) -> EscalationSweepResult:
        """
        Advance every due execution one rung up its escalation ladder.

        Each advance is a conditional update keyed on the previously read
        (status, escalation_level), so overlapping sweeps escalate a given
        execution at most once per rung.
        """
        now = now or utc_now()
        result = EscalationSweepResult()

        query = (
            select(WorkflowExecution)
            .where(
                WorkflowExecution.status.in_([
                    ExecutionStatus.COMPLETED,
                    ExecutionStatus.ESCALATED,
                ]),
                WorkflowExecution.next_escalation_at.isnot(None),
                WorkflowExecution.next_escalation_at <= now,
            )
            .options(selectinload(WorkflowExecution.workflow))
            .order_by(WorkflowExecution.next_escalation_at.asc())
        )
        executions = (await self._session.execute(query)).scalars().all()

        for execution in executions:
            execution_id = execution.id
            try:
                async with self._session.begin_nested():
                    escalated = await self._escalate(execution, now)
            except Exception as e:
                logger.error(f"Failed to escalate execution {execution_id}: {e}")
                result.errors.append(f"Execution {execution_id}: {e}")
                result.failed_execution_ids.append(execution_id)
                # Drop attribute values read inside the rolled-back savepoint
                await self._session.refresh(execution)
                continue

            if escalated:
                result.escalated += 1
                result.escalated_execution_ids.append(execution_id)
            else:
                result.skipped += 1

        await self._session.flush()

        logger.info(
            f"Escalation sweep: {result.escalated} escalated, "
            f"{result.skipped} skipped, {len(result.errors)} errors"
        )
        return result

    async def _escalate(self, execution: WorkflowExecution, now: datetime) -> bool:
        workflow = execution.workflow
        rules = parse_escalation_rules(workflow, self._settings.default_escalation_timeout_hours)
        level = execution.escalation_level
        previous_status = execution.status

        if level >= len(rules):
            # Ladder exhausted: disarm the stale deadline and wait for manual resolution
            await self._session.execute(
                update(WorkflowExecution)
                .where(
                    WorkflowExecution.id == execution.id,
                    WorkflowExecution.escalation_level == level,
                )
                .values(next_escalation_at=None)
                .execution_options(synchronize_session=False)
            )
            await self._session.refresh(execution)
            return False

        rule = rules[level]
        new_level = level + 1
        response_deadline = now + timedelta(hours=rule.timeout_hours)
        next_escalation_at = response_deadline if new_level < len(rules) else None

        claimed = await self._session.execute(
            update(WorkflowExecution)
            .where(
                WorkflowExecution.id == execution.id,
                WorkflowExecution.status == previous_status,
                WorkflowExecution.escalation_level == level,
            )
            .values(
                status=ExecutionStatus.ESCALATED,
                escalation_level=new_level,
                next_escalation_at=next_escalation_at,
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            logger.info(f"Execution {execution.id} already escalated by a concurrent sweep")
            await self._session.refresh(execution)
            return False

        await self._session.refresh(execution)

        self._session.add(EscalationHistory(
            execution_id=execution.id,
            escalation_level=new_level,
            escalation_reason=AUTO_ESCALATION_REASON,
            escalated_to=rule.escalated_to,
            response_deadline=response_deadline,
        ))
        await self._session.flush()

        await self._notify_targets(workflow, execution, rule, new_level)

        logger.info(
            f"Escalated execution {execution.id} of '{workflow.name}' to level {new_level}"
        )
        return True

    async def _notify_targets(
        self,
        workflow: Workflow,
        execution: WorkflowExecution,
        rule: EscalationRule,
        level: int,
    ) -> None:
        message = f"Workflow '{workflow.name}' has been escalated to level {level}."
        if rule.reason:
            message += f" Reason: {rule.reason}"

        for target in rule.escalated_to:
            try:
                user_id = UUID(target)
            except ValueError:
                logger.warning(f"Execution {execution.id}: invalid escalation target {target!r}")
                continue
            try:
                async with self._session.begin_nested():
                    await self._inbox.create(
                        user_id=user_id,
                        title=f"Escalation: {workflow.name}",
                        message=message,
                        notification_type="workflow_escalation",
                        data={
                            "workflow_id": str(workflow.id),
                            "execution_id": str(execution.id),
                            "escalation_level": level,
                        },
                    )
            except Exception as e:
                logger.error(f"Failed to notify {target} about execution {execution.id}: {e}")

    # =========================================================================
    # RESOLUTION
    # =========================================================================

    async def resolve_escalation(
        self,
        execution_id: UUID,
        resolved_by: str | None = None,
        resolution_notes: str | None = None,
    ) -> ResolutionResult:
        """
        Close the latest open escalation step and take the execution off the ladder.

        Calling it again is a no-op beyond returning the resolved state.
        """
        execution = await self._session.get(WorkflowExecution, execution_id)
        if execution is None:
            raise ExecutionNotFoundError(f"Execution {execution_id} not found")

        now = utc_now()
        entry_result = await self._session.execute(
            select(EscalationHistory)
            .where(
                EscalationHistory.execution_id == execution_id,
                EscalationHistory.resolved_at.is_(None),
            )
            .order_by(EscalationHistory.escalation_level.desc(), EscalationHistory.created_at.desc())
            .limit(1)
        )
        entry = entry_result.scalar_one_or_none()

        if entry is not None:
            entry.resolved_at = now
            entry.resolved_by = resolved_by
            entry.resolution_notes = resolution_notes

        execution.status = ExecutionStatus.RESOLVED
        execution.next_escalation_at = None
        if execution.resolved_at is None:
            execution.resolved_at = now

        await self._session.flush()

        logger.info(f"Resolved execution {execution_id} (by {resolved_by or 'system'})")
        return ResolutionResult(
            execution_id=execution.id,
            status=execution.status,
            history_entry_id=entry.id if entry is not None else None,
        )

"""
Workflow API Routes: a single action endpoint for the workflow processor.

POST /workflows/process with `action` set to one of:
- execute_workflow (workflow_id, trigger_data?)
- process_escalations
- trigger_event_workflows (trigger_data)
- resolve_escalation (execution_id, resolved_by?, resolution_notes?)
"""

from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ..core import SessionDep, SettingsDep
from ..services.workflow_engine import (
    ExecutionNotFoundError,
    InvalidWorkflowRequestError,
    WorkflowEngine,
    WorkflowNotFoundError,
)

router = APIRouter(prefix="/workflows", tags=["workflows"])


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================


class WorkflowProcessRequest(BaseModel):
    """Action request for the workflow processor."""
    action: str = Field(..., min_length=1)
    workflow_id: UUID | None = None
    trigger_data: dict[str, Any] | None = None
    execution_id: UUID | None = None
    resolved_by: str | None = Field(default=None, max_length=255)
    resolution_notes: str | None = None


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_workflow_engine(session: SessionDep, settings: SettingsDep) -> WorkflowEngine:
    return WorkflowEngine(session, settings)


WorkflowEngineDep = Annotated[WorkflowEngine, Depends(get_workflow_engine)]


# =============================================================================
# ACTIONS
# =============================================================================


async def _execute_workflow(engine: WorkflowEngine, request: WorkflowProcessRequest) -> dict:
    if request.workflow_id is None:
        raise InvalidWorkflowRequestError("workflow_id is required")
    execution_id = await engine.execute_workflow(request.workflow_id, request.trigger_data or {})
    return {"success": True, "execution_id": str(execution_id)}


async def _process_escalations(engine: WorkflowEngine, request: WorkflowProcessRequest) -> dict:
    result = await engine.process_escalations()
    return {
        "success": True,
        "escalated_count": result.escalated,
        "skipped_count": result.skipped,
        "escalated_execution_ids": [str(i) for i in result.escalated_execution_ids],
        "failed_execution_ids": [str(i) for i in result.failed_execution_ids],
        "errors": result.errors,
    }


async def _trigger_event_workflows(engine: WorkflowEngine, request: WorkflowProcessRequest) -> dict:
    if request.trigger_data is None:
        raise InvalidWorkflowRequestError("trigger_data is required")
    result = await engine.trigger_event_workflows(request.trigger_data)
    return {
        "success": True,
        "workflows_evaluated": result.workflows_evaluated,
        "triggered_workflows": result.triggered,
        "errors": result.errors,
    }


async def _resolve_escalation(engine: WorkflowEngine, request: WorkflowProcessRequest) -> dict:
    if request.execution_id is None:
        raise InvalidWorkflowRequestError("execution_id is required")
    result = await engine.resolve_escalation(
        request.execution_id,
        resolved_by=request.resolved_by,
        resolution_notes=request.resolution_notes,
    )
    return {
        "success": True,
        "execution_id": str(result.execution_id),
        "status": result.status.value,
        "resolved_entry_id": str(result.history_entry_id) if result.history_entry_id else None,
    }


ACTIONS = {
    "execute_workflow": _execute_workflow,
    "process_escalations": _process_escalations,
    "trigger_event_workflows": _trigger_event_workflows,
    "resolve_escalation": _resolve_escalation,
}


@router.post("/process", summary="Run a workflow processor action")
async def process_workflow_action(request: WorkflowProcessRequest, engine: WorkflowEngineDep):
    handler = ACTIONS.get(request.action)
    try:
        if handler is None:
            raise InvalidWorkflowRequestError(f"Unknown action: {request.action}")
        return await handler(engine, request)
    except InvalidWorkflowRequestError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except (WorkflowNotFoundError, ExecutionNotFoundError) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

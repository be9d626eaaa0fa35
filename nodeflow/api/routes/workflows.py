"""
Workflow API Routes.

Endpoints for storing, validating, exporting and running workflows.
Workflows are submitted and stored in their persisted JSON form and are
rebuilt from it for every run.
"""

from typing import Any, Dict, Optional
from fastapi import APIRouter, BackgroundTasks, Body, HTTPException, Response, status
from uuid import uuid4
import logging

from nodeflow.api.schemas import (
    ErrorResponse,
    ExecutionLogEntry,
    RunControlResponse,
    RunListResponse,
    WorkflowCreateResponse,
    WorkflowInfoResponse,
    WorkflowListResponse,
    WorkflowRunRequest,
    WorkflowRunResponse,
    WorkflowValidateResponse,
    ValidationIssueModel,
    RunErrorModel,
)
from nodeflow.engine.errors import NodeflowError
from nodeflow.engine.executor import ExecutionStep, Executor
from nodeflow.engine.graph import Workflow
from nodeflow.engine.node import ExecutionResult
from nodeflow.engine.policy import ExecutionPolicy, NodePolicy
from nodeflow.serialization import WorkflowSerializer
from nodeflow.storage.memory import StoredRun, StoredWorkflow, run_storage, workflow_storage


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["Workflows"])

serializer = WorkflowSerializer()


# ============================================================
# Helpers
# ============================================================

def load_workflow(definition: Dict[str, Any]) -> Workflow:
    """Build a workflow from a payload, mapping engine errors to HTTP 400."""
    try:
        return serializer.from_json(definition)
    except NodeflowError as e:
        raise HTTPException(status_code=400, detail=str(e))


def build_policy(request: WorkflowRunRequest) -> ExecutionPolicy:
    policy = ExecutionPolicy.from_settings()
    if request.policy is None:
        return policy
    try:
        return policy.merge(NodePolicy.from_dict({
            "errorPolicy": request.policy.error_policy,
            "timeout": request.policy.timeout,
            "maxRetries": request.policy.max_retries,
            "retryBackoff": request.policy.retry_backoff,
        }))
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid policy: {e}")


def step_recorder(run_id: str):
    """on_step callback that stores every step as it happens."""
    async def on_step(step: ExecutionStep, result: Optional[ExecutionResult]):
        await run_storage.add_log_entry(run_id, step.to_dict())
    return on_step


def run_to_response(stored: StoredRun) -> WorkflowRunResponse:
    return WorkflowRunResponse(
        run_id=stored.run_id,
        workflow_id=stored.workflow_id,
        status=stored.status,
        current_node=stored.current_node,
        results=stored.results,
        errors=[RunErrorModel(**error) for error in stored.errors],
        skipped=stored.skipped,
        node_statuses=stored.node_statuses,
        execution_log=[ExecutionLogEntry(**entry) for entry in stored.execution_log],
        started_at=stored.started_at.isoformat(),
        completed_at=stored.completed_at.isoformat() if stored.completed_at else None,
        total_duration_ms=stored.total_duration_ms,
    )


def workflow_info(stored: StoredWorkflow, include_diagram: bool = True) -> WorkflowInfoResponse:
    workflow = serializer.from_json(stored.definition)
    return WorkflowInfoResponse(
        workflow_id=stored.workflow_id,
        name=stored.name,
        description=workflow.description or None,
        node_count=len(workflow.nodes),
        connection_count=len(workflow.connections),
        nodes=[
            {"id": node.node_id, "name": node.name, "type": node.node_type}
            for node in workflow.nodes.values()
        ],
        execution_order=workflow.get_execution_order(),
        created_at=stored.created_at.isoformat(),
        updated_at=stored.updated_at.isoformat(),
        mermaid_diagram=workflow.to_mermaid() if include_diagram else None,
    )


async def get_stored_workflow(workflow_id: str) -> StoredWorkflow:
    stored = await workflow_storage.get(workflow_id)
    if not stored:
        raise HTTPException(status_code=404, detail=f"Workflow '{workflow_id}' not found")
    return stored


# ============================================================
# Workflow CRUD Endpoints
# ============================================================

@router.post(
    "",
    response_model=WorkflowCreateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse, "description": "Invalid workflow definition"}},
)
async def create_workflow(payload: Dict[str, Any] = Body(...)) -> WorkflowCreateResponse:
    """
    Store a workflow given in its persisted JSON form.

    The payload is fully loaded (type tags resolved, connections
    re-validated) before it is stored. An existing workflow with the same
    id is replaced.
    """
    workflow = load_workflow(payload)
    warnings = workflow.validate()

    await workflow_storage.save(
        workflow_id=workflow.workflow_id,
        name=workflow.name,
        definition=serializer.to_json(workflow),
    )

    logger.info(f"Stored workflow: {workflow.workflow_id} ({workflow.name})")

    return WorkflowCreateResponse(
        workflow_id=workflow.workflow_id,
        name=workflow.name,
        node_count=len(workflow.nodes),
        connection_count=len(workflow.connections),
        warnings=warnings,
    )


@router.post("/validate", response_model=WorkflowValidateResponse)
async def validate_workflow(payload: Any = Body(...)) -> WorkflowValidateResponse:
    """Pre-flight check of a workflow payload without storing or building it."""
    issues = serializer.validate(payload)
    return WorkflowValidateResponse(
        valid=not issues,
        issues=[ValidationIssueModel(**issue.to_dict()) for issue in issues],
    )


@router.get("", response_model=WorkflowListResponse)
async def list_workflows() -> WorkflowListResponse:
    """List all stored workflows."""
    stored_workflows = await workflow_storage.list_all()
    infos = [workflow_info(stored, include_diagram=False) for stored in stored_workflows]
    return WorkflowListResponse(workflows=infos, total=len(infos))


# ============================================================
# Execution Endpoints
# ============================================================

@router.post(
    "/run",
    response_model=WorkflowRunResponse,
    responses={404: {"model": ErrorResponse}, 400: {"model": ErrorResponse}},
)
async def run_workflow(
    request: WorkflowRunRequest,
    background_tasks: BackgroundTasks,
) -> WorkflowRunResponse:
    """
    Execute a stored workflow.

    If `async_execution` is True, the workflow runs in the background and
    its progress can be polled with GET /workflows/runs/{run_id}.
    """
    stored = await get_stored_workflow(request.workflow_id)
    workflow = load_workflow(stored.definition)
    policy = build_policy(request)

    run_id = str(uuid4())
    executor = Executor(workflow, run_id=run_id, policy=policy, on_step=step_recorder(run_id))
    run = await run_storage.create(run_id, stored.workflow_id, request.metadata, executor=executor)

    if request.async_execution:
        background_tasks.add_task(_execute_in_background, executor, run_id, request.metadata)
        return run_to_response(run)

    result = await executor.run(request.metadata)
    run = await run_storage.complete(run_id, result)
    return run_to_response(run)


async def _execute_in_background(executor: Executor, run_id: str, metadata: Dict[str, Any]):
    """Execute a workflow in the background."""
    try:
        result = await executor.run(metadata)
        await run_storage.complete(run_id, result)
    except Exception as e:
        logger.exception(f"Background execution failed: {e}")
        await run_storage.fail(run_id, str(e))


@router.get("/runs", response_model=RunListResponse)
async def list_runs(workflow_id: Optional[str] = None) -> RunListResponse:
    """List all runs, optionally filtered by workflow_id."""
    if workflow_id:
        runs = await run_storage.list_by_workflow(workflow_id)
    else:
        runs = await run_storage.list_all()
    responses = [run_to_response(run) for run in runs]
    return RunListResponse(runs=responses, total=len(responses))


@router.get(
    "/runs/{run_id}",
    response_model=WorkflowRunResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_run(run_id: str) -> WorkflowRunResponse:
    """Get the current state of a run."""
    stored = await run_storage.get(run_id)
    if not stored:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found")
    return run_to_response(stored)


@router.post(
    "/runs/{run_id}/{action}",
    response_model=RunControlResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def control_run(run_id: str, action: str) -> RunControlResponse:
    """
    Send a control command to a run in progress.

    Actions: cancel, pause, resume. Commands take effect before the next
    node starts; a node already executing is not interrupted.
    """
    if action not in ("cancel", "pause", "resume"):
        raise HTTPException(status_code=404, detail=f"Unknown action '{action}'")

    stored = await run_storage.get(run_id)
    if not stored:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found")

    executor = run_storage.get_executor(run_id)
    if executor is None or stored.is_finished:
        raise HTTPException(status_code=409, detail=f"Run '{run_id}' is not in progress")

    getattr(executor, action)()
    await run_storage.set_status(run_id, executor.status.value)
    logger.info(f"Run {run_id}: {action} requested")

    return RunControlResponse(
        run_id=run_id,
        status=executor.status.value,
        message=f"{action.capitalize()} requested",
    )


# ============================================================
# Single Workflow Endpoints
# ============================================================

@router.get(
    "/{workflow_id}",
    response_model=WorkflowInfoResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_workflow(workflow_id: str) -> WorkflowInfoResponse:
    """Get information about a stored workflow, including a Mermaid diagram."""
    stored = await get_stored_workflow(workflow_id)
    return workflow_info(stored)


@router.get("/{workflow_id}/export", responses={404: {"model": ErrorResponse}})
async def export_workflow(workflow_id: str, response: Response) -> Dict[str, Any]:
    """Download the workflow in its persisted JSON form."""
    stored = await get_stored_workflow(workflow_id)
    workflow = serializer.from_json(stored.definition)
    response.headers["Content-Disposition"] = f'attachment; filename="{serializer.export_filename(workflow)}"'
    return serializer.to_json(workflow)


@router.delete(
    "/{workflow_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
)
async def delete_workflow(workflow_id: str):
    """Delete a stored workflow."""
    deleted = await workflow_storage.delete(workflow_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Workflow '{workflow_id}' not found")
    logger.info(f"Deleted workflow: {workflow_id}")

"""
WebSocket Routes for Real-time Execution Streaming.

Provides live step updates during workflow execution and accepts
pause / resume / cancel commands while the run is in progress.
"""

from typing import Any, Dict, Optional, Set
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from uuid import uuid4
import asyncio
import logging

from nodeflow.engine.errors import NodeflowError
from nodeflow.engine.executor import ExecutionStep, Executor, WorkflowRunResult
from nodeflow.engine.node import ExecutionResult
from nodeflow.serialization import WorkflowSerializer
from nodeflow.storage.memory import run_storage, workflow_storage


logger = logging.getLogger(__name__)

router = APIRouter(tags=["WebSocket"])

CONTROL_ACTIONS = ("pause", "resume", "cancel")


class ConnectionManager:
    """Manages WebSocket connections."""

    def __init__(self):
        self.active_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, run_id: str):
        """Accept a new WebSocket connection."""
        await websocket.accept()
        self.active_connections.setdefault(run_id, set()).add(websocket)
        logger.info(f"WebSocket connected for run: {run_id}")

    def disconnect(self, websocket: WebSocket, run_id: str):
        """Remove a WebSocket connection."""
        if run_id in self.active_connections:
            self.active_connections[run_id].discard(websocket)
            if not self.active_connections[run_id]:
                del self.active_connections[run_id]
        logger.info(f"WebSocket disconnected for run: {run_id}")

    async def broadcast(self, run_id: str, message: Dict[str, Any]):
        """Broadcast a message to all connections for a run."""
        disconnected = set()
        for websocket in self.active_connections.get(run_id, set()):
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.debug(f"Dropping WebSocket for run {run_id}: {e}")
                disconnected.add(websocket)

        for ws in disconnected:
            self.disconnect(ws, run_id)


# Global connection manager
manager = ConnectionManager()


@router.websocket("/ws/run/{workflow_id}")
async def websocket_run(websocket: WebSocket, workflow_id: str):
    """
    WebSocket endpoint for real-time workflow execution.

    Message format (client -> server):
    ```json
    {"action": "start", "metadata": {"user": "alice"}}
    {"action": "pause"} | {"action": "resume"} | {"action": "cancel"}
    ```

    Message format (server -> client):
    ```json
    {"type": "started", "run_id": "...", "workflow_id": "..."}
    {"type": "step", "step": 1, "node_id": "fetch", "result": "success", "output": {...}, ...}
    {"type": "control", "action": "pause", "status": "paused"}
    {"type": "completed", "run_id": "...", "status": "completed", "results": {...}, ...}
    ```
    """
    stored = await workflow_storage.get(workflow_id)
    if not stored:
        await websocket.close(code=4004, reason=f"Workflow '{workflow_id}' not found")
        return

    run_id = str(uuid4())
    await manager.connect(websocket, run_id)

    try:
        data = await websocket.receive_json()

        if data.get("action") != "start":
            await websocket.send_json({
                "type": "error",
                "error": "Expected 'start' action",
            })
            return

        metadata = data.get("metadata") or {}

        try:
            workflow = WorkflowSerializer().from_json(stored.definition)
        except NodeflowError as e:
            await websocket.send_json({"type": "error", "error": str(e)})
            return

        async def on_step(step: ExecutionStep, result: Optional[ExecutionResult]):
            await run_storage.add_log_entry(run_id, step.to_dict())
            await manager.broadcast(run_id, {
                "type": "step",
                **step.to_dict(),
                "output": result.data if result is not None else None,
            })

        executor = Executor(workflow, run_id=run_id, on_step=on_step)
        await run_storage.create(run_id, workflow_id, metadata, executor=executor)

        await websocket.send_json({
            "type": "started",
            "run_id": run_id,
            "workflow_id": workflow_id,
        })

        result = await _run_with_controls(websocket, executor, metadata)
        if result is None:
            await websocket.send_json({"type": "error", "error": f"Run {run_id} failed"})
            await websocket.close()
            return

        await websocket.send_json({
            "type": "completed",
            **result.to_dict(),
        })
        await websocket.close()

    except WebSocketDisconnect:
        logger.info(f"Client disconnected from run {run_id}")
    except Exception as e:
        logger.exception(f"WebSocket error: {e}")
        try:
            await websocket.send_json({
                "type": "error",
                "error": str(e),
            })
        except Exception as send_error:
            logger.debug(f"Could not report error to client: {send_error}")
    finally:
        manager.disconnect(websocket, run_id)


# Runs whose client went away keep executing here until they finish
detached_runs: Set["asyncio.Task[Optional[WorkflowRunResult]]"] = set()


async def _run_and_store(executor: Executor, metadata: Dict[str, Any]) -> Optional[WorkflowRunResult]:
    """Execute the run and store its outcome. Returns None if the run could not finish."""
    try:
        result = await executor.run(metadata)
        await run_storage.complete(executor.run_id, result)
        return result
    except Exception as e:
        logger.exception(f"WebSocket run {executor.run_id} failed: {e}")
        await run_storage.fail(executor.run_id, str(e))
        return None


async def _run_with_controls(
    websocket: WebSocket,
    executor: Executor,
    metadata: Dict[str, Any],
) -> Optional[WorkflowRunResult]:
    """
    Run the executor while listening for control messages.

    If the client disconnects, the run is cancelled and finishes (and is
    stored) in the background.
    """
    run_task = asyncio.create_task(_run_and_store(executor, metadata))

    while not run_task.done():
        receive_task = asyncio.create_task(websocket.receive_json())
        done, _ = await asyncio.wait(
            {run_task, receive_task},
            return_when=asyncio.FIRST_COMPLETED,
        )

        if receive_task not in done:
            receive_task.cancel()
            break

        try:
            message = receive_task.result()
        except WebSocketDisconnect:
            executor.cancel()
            detached_runs.add(run_task)
            run_task.add_done_callback(detached_runs.discard)
            raise
        except ValueError as e:
            await websocket.send_json({"type": "error", "error": f"Invalid message: {e}"})
            continue

        action = message.get("action") if isinstance(message, dict) else None
        if action not in CONTROL_ACTIONS:
            await websocket.send_json({
                "type": "error",
                "error": f"Unknown action '{action}', expected one of {', '.join(CONTROL_ACTIONS)}",
            })
            continue

        getattr(executor, action)()
        await run_storage.set_status(executor.run_id, executor.status.value)
        await websocket.send_json({
            "type": "control",
            "action": action,
            "status": executor.status.value,
        })

    return await run_task

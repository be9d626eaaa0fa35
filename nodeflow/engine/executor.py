"""
Async Workflow Executor.

The executor runs a workflow once: it visits every node in topological
order, gathers its inputs from upstream outputs, resolves its dynamic
settings, executes it under the configured error policy, and records an
execution log. Node failures never escape a run; they are collected in
the run result instead.
"""

from typing import Any, Callable, Dict, List, Mapping, Optional, Set
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import asyncio
import inspect
import logging
import time
import uuid

from nodeflow.engine.errors import (
    CycleError,
    ExecutionError,
    NodeTimeoutError,
    RetryExhaustedError,
    WorkflowError,
    describe_error,
)
from nodeflow.engine.graph import Connection, Workflow
from nodeflow.engine.node import BaseNode, ExecutionResult, NodeStatus
from nodeflow.engine.policy import ErrorPolicy, ExecutionPolicy
from nodeflow.engine.safe_eval import safe_eval
from nodeflow.engine.state import ExecutionContext


logger = logging.getLogger(__name__)


class ExecutionStatus(str, Enum):
    """Status of a workflow run."""
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class ExecutionStep:
    """A single entry in the execution log."""
    step: int
    node_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    attempts: int = 0
    result: str = "success"  # success | error | skipped
    error: Optional[str] = None
    branch: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "node_id": self.node_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "attempts": self.attempts,
            "result": self.result,
            "error": self.error,
            "branch": self.branch,
        }


@dataclass
class WorkflowRunResult:
    """
    Result of a workflow run.

    Attributes:
        results: node_id -> ExecutionResult for every node that executed
        errors: Engine errors in the order they occurred
        skipped: Nodes that were not executed (branch not taken or upstream failure)
        node_statuses: node_id -> final NodeStatus value
    """
    run_id: str
    workflow_id: str
    status: ExecutionStatus
    results: Dict[str, ExecutionResult] = field(default_factory=dict)
    errors: List[Exception] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    execution_log: List[ExecutionStep] = field(default_factory=list)
    node_statuses: Dict[str, str] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_duration_ms: Optional[float] = None

    @property
    def outputs(self) -> Dict[str, Any]:
        """Data produced by the nodes that succeeded."""
        return {node_id: r.data for node_id, r in self.results.items() if r.success}

    @property
    def timings(self) -> Dict[str, Optional[float]]:
        return {
            step.node_id: step.duration_ms
            for step in self.execution_log
            if step.result != "skipped"
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "workflow_id": self.workflow_id,
            "status": self.status.value,
            "results": {node_id: r.to_dict() for node_id, r in self.results.items()},
            "errors": [describe_error(e) for e in self.errors],
            "skipped": self.skipped,
            "execution_log": [step.to_dict() for step in self.execution_log],
            "node_statuses": self.node_statuses,
            "timings": self.timings,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_duration_ms": self.total_duration_ms,
        }


StepCallback = Callable[[ExecutionStep, Optional[ExecutionResult]], Any]


class Executor:
    """
    Async workflow executor.

    Executes a workflow once, handling:
    - Sequential node execution in topological order
    - Branch selection and connection guards
    - Per-node timeout and retry with linear backoff
    - Stop / continue error policy
    - Cooperative pause, resume and cancellation

    Usage:
        executor = Executor(workflow)
        result = await executor.run({"user": "alice"})
    """

    def __init__(
        self,
        workflow: Workflow,
        run_id: Optional[str] = None,
        policy: Optional[ExecutionPolicy] = None,
        on_step: Optional[StepCallback] = None,
    ):
        """
        Initialize the executor.

        Args:
            workflow: The workflow to execute
            run_id: Optional run ID (generated if not provided)
            policy: Run-wide policy (defaults come from settings)
            on_step: Optional callback after each node (sync or async)
        """
        self.workflow = workflow
        self.run_id = run_id or str(uuid.uuid4())
        self.policy = policy or ExecutionPolicy.from_settings()
        self.on_step = on_step

        self.context: Optional[ExecutionContext] = None
        self._results: Dict[str, ExecutionResult] = {}
        self._errors: List[Exception] = []
        self._skipped: List[str] = []
        self._execution_log: List[ExecutionStep] = []
        self._step_counter = 0
        self._current_node: Optional[str] = None
        self._status = ExecutionStatus.PENDING
        self._started = False
        self._cancelled = False
        self._resume_event = asyncio.Event()
        self._resume_event.set()

    @property
    def status(self) -> ExecutionStatus:
        return self._status

    @property
    def current_node(self) -> Optional[str]:
        return self._current_node

    # ------------------------------------------------------------
    # Control
    # ------------------------------------------------------------

    def cancel(self) -> None:
        """Stop the run before the next node starts."""
        self._cancelled = True
        self._status = ExecutionStatus.CANCELLED
        self._resume_event.set()

    def pause(self) -> None:
        """Hold the run before the next node starts."""
        if self._status in (ExecutionStatus.PENDING, ExecutionStatus.RUNNING):
            self._resume_event.clear()
            self._status = ExecutionStatus.PAUSED

    def resume(self) -> None:
        if self._status == ExecutionStatus.PAUSED:
            self._status = ExecutionStatus.RUNNING
            self._resume_event.set()

    # ------------------------------------------------------------
    # Run
    # ------------------------------------------------------------

    async def run(self, metadata: Optional[Dict[str, Any]] = None) -> WorkflowRunResult:
        """
        Execute the workflow.

        Args:
            metadata: Values exposed to {{$context.*}} expressions

        Returns:
            WorkflowRunResult with per-node results, errors and logs

        Raises:
            RuntimeError: The executor has already been run
        """
        if self._started:
            raise RuntimeError(f"Run {self.run_id} has already been executed; create a new Executor")
        self._started = True

        start_time = time.time()
        started_at = datetime.now()
        if self._status != ExecutionStatus.PAUSED:
            self._status = ExecutionStatus.RUNNING
        self.context = ExecutionContext.create(
            self.workflow.workflow_id,
            execution_id=self.run_id,
            metadata=metadata,
        )

        for node in self.workflow.nodes.values():
            node.reset()

        try:
            order = self.workflow.get_execution_order()
        except CycleError as e:
            logger.error(f"Refusing to run workflow '{self.workflow.workflow_id}': {e}")
            self._errors.append(WorkflowError(str(e)))
            self._status = ExecutionStatus.ERROR
            return self._build_result(started_at, start_time)

        logger.info(f"Running workflow '{self.workflow.name}' ({len(order)} nodes, run {self.run_id})")

        blocked: Set[str] = set()
        branches: Dict[str, Optional[int]] = {}

        for node_id in order:
            await self._resume_event.wait()
            if self._cancelled:
                logger.info(f"Run {self.run_id} cancelled before node '{node_id}'")
                break

            node = self.workflow.nodes[node_id]
            incoming = self.workflow.get_incoming(node_id)

            if any(c.source_node_id in blocked for c in incoming):
                blocked.add(node_id)
                await self._skip(node_id, "upstream node failed")
                continue

            active = [c for c in incoming if self._is_active(c, branches)]
            if incoming and not active:
                await self._skip(node_id, None)
                continue

            inputs = self._gather_inputs(active)
            result = await self._execute_node(node, inputs)

            if result.success:
                branches[node_id] = result.branch
                continue

            if self._error_policy_for(node) == ErrorPolicy.STOP:
                logger.info(f"Stopping run {self.run_id} after failure of node '{node_id}'")
                break
            blocked.add(node_id)

        self._current_node = None
        if self._cancelled:
            self._status = ExecutionStatus.CANCELLED
        elif self._errors:
            self._status = ExecutionStatus.ERROR
        else:
            self._status = ExecutionStatus.COMPLETED

        return self._build_result(started_at, start_time)

    def _error_policy_for(self, node: BaseNode) -> ErrorPolicy:
        # An unusable override falls back to the run's error policy
        override = node.policy.error_policy if node.policy is not None else None
        if override is not None:
            try:
                return ErrorPolicy(override)
            except ValueError:
                logger.warning(f"Node {node.node_id} has invalid error policy '{override}'")
        return self.policy.error_policy

    def _is_active(self, connection: Connection, branches: Mapping[str, Optional[int]]) -> bool:
        """Check whether data flows along a connection in this run."""
        source_id = connection.source_node_id
        if not self.context.has_result(source_id):
            return False
        if connection.branch_index is not None and branches.get(source_id) != connection.branch_index:
            return False
        if connection.guard:
            try:
                return bool(safe_eval(connection.guard, {"value": self.context.get_result(source_id)}))
            except (SyntaxError, ValueError, TypeError, LookupError, ArithmeticError) as e:
                logger.warning(f"Guard on connection '{connection.connection_id}' failed: {e}")
                return False
        return True

    def _gather_inputs(self, connections: List[Connection]) -> Dict[str, Any]:
        """
        Collect a node's inputs from its active incoming connections.

        A connection naming a source port delivers that field of the source
        output; one naming only a target port delivers the whole output
        under that name; otherwise the source output dict is merged in.
        Missing fields are left absent.
        """
        inputs: Dict[str, Any] = {}
        for connection in connections:
            output = self.context.get_result(connection.source_node_id)

            if connection.source_port:
                if not isinstance(output, Mapping) or connection.source_port not in output:
                    continue
                value = output[connection.source_port]
                source = self.workflow.nodes[connection.source_node_id]
                port = source.output_ports.get(connection.source_port)
                if port is not None:
                    try:
                        emitted = port.emits(value, self.context)
                    except Exception as e:
                        logger.warning(
                            f"Condition on port '{source.node_id}.{port.port_id}' failed, withholding value: {e}"
                        )
                        emitted = False
                    if not emitted:
                        continue
                inputs[connection.target_port or connection.source_port] = value
            elif connection.target_port:
                inputs[connection.target_port] = output
            elif isinstance(output, Mapping):
                inputs.update(output)
            elif output is not None:
                inputs[connection.source_node_id] = output
        return inputs

    async def _execute_node(self, node: BaseNode, inputs: Dict[str, Any]) -> ExecutionResult:
        """Execute a single node under its effective policy and record the outcome."""
        self._step_counter += 1
        self._current_node = node.node_id
        node_start_time = time.time()
        step = ExecutionStep(step=self._step_counter, node_id=node.node_id, started_at=datetime.now())

        logger.info(f"Executing node: {node.node_id} (step {self._step_counter})")
        node.set_status(NodeStatus.RUNNING)
        self.context.for_node(node.node_id)

        try:
            policy = self.policy.merge(node.policy)
        except (TypeError, ValueError) as e:
            error = ExecutionError(node.node_id, f"Invalid policy: {e}")
            result, attempts = ExecutionResult.fail(str(error)), 0
        else:
            result, error, attempts = await self._run_with_retry(node, inputs, policy)

        step.completed_at = datetime.now()
        step.duration_ms = (time.time() - node_start_time) * 1000
        step.attempts = attempts
        self._results[node.node_id] = result

        if error is None:
            node.set_status(NodeStatus.COMPLETED)
            self.context.publish(node.node_id, result.data)
            step.result = "success"
            step.branch = result.branch
        else:
            logger.error(f"Node {node.node_id} failed: {error}")
            node.set_status(NodeStatus.ERROR)
            self._errors.append(error)
            step.result = "error"
            step.error = str(error)

        await self._record(step, result)
        return result

    async def _run_with_retry(self, node: BaseNode, inputs: Dict[str, Any], policy: ExecutionPolicy):
        """
        Invoke the node, retrying failures with linear backoff.

        Returns:
            (result, error or None, attempts made)
        """
        attempts = 0
        error: Optional[Exception] = None
        result = ExecutionResult.fail("Node did not run")

        for attempt in range(1, policy.max_retries + 2):
            attempts = attempt
            try:
                result = await self._attempt(node, inputs, policy)
                if result.success:
                    return result, None, attempts
                error = ExecutionError(node.node_id, result.error or "Node reported failure")
            except NodeTimeoutError as e:
                error = e
                result = ExecutionResult.fail(str(e))
            except Exception as e:
                error = ExecutionError(node.node_id, str(e))
                result = ExecutionResult.fail(str(e))

            if attempt <= policy.max_retries:
                delay = policy.retry_backoff * attempt
                logger.warning(
                    f"Node {node.node_id} failed (attempt {attempt}), retrying in {delay}s: {error}"
                )
                await asyncio.sleep(delay)

        if policy.max_retries > 0:
            error = RetryExhaustedError(
                f"Node '{node.node_id}' failed after {attempts} attempts: {error}",
                node_id=node.node_id,
                attempts=attempts,
            )
        return result, error, attempts

    async def _attempt(self, node: BaseNode, inputs: Dict[str, Any], policy: ExecutionPolicy) -> ExecutionResult:
        validated = node.validate_inputs(inputs)
        node.settings = node.resolve_dynamic_settings(validated, self.context)

        try:
            if policy.timeout is not None:
                result = await asyncio.wait_for(node.execute(validated, self.context), policy.timeout)
            else:
                result = await node.execute(validated, self.context)
        except asyncio.TimeoutError:
            raise NodeTimeoutError(
                f"Node '{node.node_id}' timed out after {policy.timeout}s",
                node_id=node.node_id,
            )

        if not isinstance(result, ExecutionResult):
            raise TypeError(f"Node '{node.node_id}' returned {type(result).__name__}, expected ExecutionResult")
        return result

    async def _skip(self, node_id: str, reason: Optional[str]) -> None:
        logger.debug(f"Skipping node {node_id}" + (f": {reason}" if reason else ""))
        self._skipped.append(node_id)
        self._step_counter += 1
        now = datetime.now()
        step = ExecutionStep(
            step=self._step_counter,
            node_id=node_id,
            started_at=now,
            completed_at=now,
            duration_ms=0.0,
            result="skipped",
            error=reason,
        )
        await self._record(step, None)

    async def _record(self, step: ExecutionStep, result: Optional[ExecutionResult]) -> None:
        """Add a step to the log and notify the callback."""
        self._execution_log.append(step)
        if self.on_step:
            try:
                outcome = self.on_step(step, result)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.warning(f"Step callback failed: {e}")

    def _build_result(self, started_at: datetime, start_time: float) -> WorkflowRunResult:
        return WorkflowRunResult(
            run_id=self.run_id,
            workflow_id=self.workflow.workflow_id,
            status=self._status,
            results=dict(self._results),
            errors=list(self._errors),
            skipped=list(self._skipped),
            execution_log=list(self._execution_log),
            node_statuses={node_id: node.status.value for node_id, node in self.workflow.nodes.items()},
            started_at=started_at,
            completed_at=datetime.now(),
            total_duration_ms=(time.time() - start_time) * 1000,
        )

    def get_execution_summary(self) -> Dict[str, Any]:
        """Get a summary of the current execution."""
        return {
            "run_id": self.run_id,
            "workflow_id": self.workflow.workflow_id,
            "status": self._status.value,
            "current_node": self._current_node,
            "step_count": self._step_counter,
            "completed": [node_id for node_id, r in self._results.items() if r.success],
            "failed": [node_id for node_id, r in self._results.items() if not r.success],
            "skipped": list(self._skipped),
        }


async def execute_workflow(
    workflow: Workflow,
    metadata: Optional[Dict[str, Any]] = None,
    run_id: Optional[str] = None,
    policy: Optional[ExecutionPolicy] = None,
    on_step: Optional[StepCallback] = None,
) -> WorkflowRunResult:
    """
    Convenience function to execute a workflow.

    Args:
        workflow: The workflow to run
        metadata: Run metadata for {{$context.*}} expressions
        run_id: Optional run ID
        policy: Optional run-wide policy
        on_step: Optional step callback

    Returns:
        WorkflowRunResult
    """
    executor = Executor(workflow, run_id=run_id, policy=policy, on_step=on_step)
    return await executor.run(metadata)

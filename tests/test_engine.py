"""
Tests for the Workflow Engine core components.
"""

import pytest
import asyncio
from typing import Dict, Any

from nodeflow.engine.errors import (
    CycleError,
    DuplicateNodeError,
    ExecutionError,
    IncompatiblePortsError,
    MissingNodeError,
    NodeTimeoutError,
    RetryExhaustedError,
    StructuralError,
    WorkflowError,
)
from nodeflow.engine.executor import ExecutionStatus, Executor, execute_workflow
from nodeflow.engine.expressions import ExpressionResolver, extract_dependencies
from nodeflow.engine.graph import Connection, Workflow, find_cycle
from nodeflow.engine.node import BaseNode, ExecutionResult, NodeStatus
from nodeflow.engine.policy import ErrorPolicy, ExecutionPolicy, NodePolicy
from nodeflow.engine.ports import OutputPort, PortType, is_compatible, value_matches
from nodeflow.engine.safe_eval import UnsafeExpressionError, safe_eval
from nodeflow.engine.state import ExecutionContext
from nodeflow.nodes.condition import ConditionNode


# ============================================================
# Test Nodes
# ============================================================

class StaticNode(BaseNode):
    """Emits its (resolved) "output" setting."""

    async def execute(self, inputs: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
        return ExecutionResult.ok(dict(self.settings.get("output") or {}))


class RecordingNode(BaseNode):
    """Emits the inputs it received."""

    async def execute(self, inputs: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
        return ExecutionResult.ok({"inputs": inputs})


class FailingNode(BaseNode):
    async def execute(self, inputs: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
        if self.settings.get("raise"):
            raise RuntimeError("boom")
        return ExecutionResult.fail("failed on purpose")


class FlakyNode(BaseNode):
    """Raises for the first `fail_times` calls."""

    def __init__(self, *args, fail_times: int = 1, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_times = fail_times
        self.calls = 0

    async def execute(self, inputs: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
        self.calls += 1
        if self.calls <= self.fail_times:
            raise RuntimeError(f"attempt {self.calls} failed")
        return ExecutionResult.ok({"calls": self.calls})


class SlowNode(BaseNode):
    async def execute(self, inputs: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
        await asyncio.sleep(self.settings.get("delay", 1.0))
        return ExecutionResult.ok({})


class TypedNode(BaseNode):
    def define_ports(self) -> None:
        self.add_input_port("text", PortType.STRING, required=True)
        self.add_input_port("limit", PortType.NUMBER, default=10)
        self.add_output_port("count", PortType.NUMBER)
        self.add_output_port("summary", PortType.STRING)

    async def execute(self, inputs: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
        return ExecutionResult.ok({"count": len(inputs["text"]), "summary": inputs["text"][: inputs["limit"]]})


def linear_workflow() -> Workflow:
    """A -> B -> C where C reads A's output through an expression."""
    workflow = Workflow(workflow_id="linear", name="Linear")
    workflow.add_node(StaticNode("A", {"output": {"value": 1}}))
    workflow.add_node(RecordingNode("B"))
    workflow.add_node(StaticNode("C", {"output": {"text": "{{$result.A.value}}"}}))
    workflow.connect("A", "B", connection_id="a-b")
    workflow.connect("B", "C", connection_id="b-c")
    return workflow


# ============================================================
# Port Tests
# ============================================================

class TestPorts:
    """Tests for port types and compatibility."""

    def test_identical_types_are_compatible(self):
        assert is_compatible(PortType.STRING, PortType.STRING)

    def test_any_is_compatible_both_ways(self):
        assert is_compatible(PortType.ANY, PortType.NUMBER)
        assert is_compatible(PortType.NUMBER, PortType.ANY)

    def test_conversions(self):
        assert is_compatible(PortType.JSON, PortType.OBJECT)
        assert is_compatible(PortType.HTTP_RESPONSE, PortType.STRING)
        assert is_compatible(PortType.AI_RESPONSE, PortType.STRING)
        assert not is_compatible(PortType.STRING, PortType.HTTP_RESPONSE)
        assert not is_compatible(PortType.STRING, PortType.NUMBER)

    def test_value_matches(self):
        assert value_matches(PortType.NUMBER, 3)
        assert value_matches(PortType.NUMBER, 2.5)
        assert not value_matches(PortType.NUMBER, True)
        assert value_matches(PortType.ARRAY, [1, 2])
        assert not value_matches(PortType.OBJECT, "text")
        assert value_matches(PortType.JSON, object())

    def test_conditional_output_port(self):
        port = OutputPort("big", PortType.NUMBER, condition=lambda value, context: value > 10)
        assert port.emits(11, None)
        assert not port.emits(3, None)
        assert port.to_dict()["conditional"] is True


# ============================================================
# Expression Tests
# ============================================================

class TestSafeEval:
    """Tests for restricted expression evaluation."""

    def test_comparison(self):
        assert safe_eval("value > 10 and value < 20", {"value": 15}) is True
        assert safe_eval("value > 10 and value < 20", {"value": 25}) is False

    def test_subscript_and_functions(self):
        assert safe_eval("len(value['items']) == 2", {"value": {"items": [1, 2]}})

    def test_unknown_name_rejected(self):
        with pytest.raises(UnsafeExpressionError):
            safe_eval("missing + 1")

    def test_attribute_access_rejected(self):
        with pytest.raises(UnsafeExpressionError):
            safe_eval("value.__class__", {"value": 1})

    def test_arbitrary_calls_rejected(self):
        with pytest.raises(UnsafeExpressionError):
            safe_eval("__import__('os')")

    def test_functions_can_be_disabled(self):
        with pytest.raises(UnsafeExpressionError):
            safe_eval("abs(-1)", allow_functions=False)

    def test_huge_exponent_rejected(self):
        with pytest.raises(UnsafeExpressionError):
            safe_eval("2 ** 100000")

    def test_syntax_error(self):
        with pytest.raises(SyntaxError):
            safe_eval("1 +")


class TestExpressionResolver:
    """Tests for {{ }} expression resolution."""

    def test_result_reference(self):
        resolver = ExpressionResolver(results={"A": {"value": 1, "items": ["x", "y"]}})
        assert resolver.resolve_string("{{$result.A.value}}") == "1"
        assert resolver.resolve_string("second: {{ $result.A.items.1 }}") == "second: y"

    def test_missing_result_resolves_to_empty_string(self):
        resolver = ExpressionResolver(results={})
        assert resolver.resolve_string("x{{$result.A.value}}y") == "xy"

    def test_input_context_and_settings(self):
        resolver = ExpressionResolver(
            inputs={"name": "alice"},
            context={"user": "bob"},
            settings={"greeting": "hi"},
        )
        text = "{{$settings.greeting}} {{$input.name}} from {{$context.user}}"
        assert resolver.resolve_string(text) == "hi alice from bob"

    def test_objects_render_as_json(self):
        resolver = ExpressionResolver(results={"A": {"data": {"k": [1, 2]}}})
        assert resolver.resolve_string("{{$result.A.data}}") == '{"k": [1, 2]}'

    def test_unsupported_expression_left_unchanged(self):
        resolver = ExpressionResolver()
        assert resolver.resolve_string("{{ 1 + 1 }}") == "{{ 1 + 1 }}"

    def test_resolve_nested_structures(self):
        resolver = ExpressionResolver(inputs={"id": 7})
        resolved = resolver.resolve({"url": "/items/{{$input.id}}", "tags": ["{{$input.id}}", 3]})
        assert resolved == {"url": "/items/7", "tags": ["7", 3]}

    def test_resolution_is_idempotent(self):
        resolver = ExpressionResolver(results={"A": {"value": 1}})
        settings = {"text": "{{$result.A.value}}"}
        first = resolver.resolve(settings)
        second = resolver.resolve(settings)
        assert first == second == {"text": "1"}
        assert settings == {"text": "{{$result.A.value}}"}

    def test_extract_dependencies(self):
        settings = {"a": "{{$result.fetch.data}}", "b": ["{{ $result.parse.x }}", "{{$input.y}}"]}
        assert extract_dependencies(settings) == {"fetch", "parse"}


# ============================================================
# Node Tests
# ============================================================

class TestNode:
    """Tests for BaseNode."""

    def test_create_node(self):
        node = StaticNode("n1", {"output": {"a": 1}}, name="Static")
        assert node.node_id == "n1"
        assert node.name == "Static"
        assert node.status == NodeStatus.IDLE
        assert node.settings == node.original_settings

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError):
            StaticNode("")

    def test_settings_are_copied(self):
        settings = {"output": {"a": 1}}
        node = StaticNode("n1", settings)
        settings["output"]["a"] = 2
        assert node.original_settings == {"output": {"a": 1}}

    def test_validate_inputs(self):
        node = TypedNode("typed")
        assert node.validate_inputs({"text": "hello"}) == {"text": "hello", "limit": 10}

        with pytest.raises(ValueError, match="Required input"):
            node.validate_inputs({})
        with pytest.raises(ValueError, match="expected string"):
            node.validate_inputs({"text": 5})

    def test_clone(self):
        node = StaticNode("n1", {"output": {"a": 1}}, policy=NodePolicy(timeout=3))
        cloned = node.clone("n2")
        assert cloned.node_id == "n2"
        assert cloned.original_settings == node.original_settings
        assert cloned.policy == node.policy
        assert cloned.policy is not node.policy

    @pytest.mark.asyncio
    async def test_resolve_dynamic_settings(self):
        node = StaticNode("n1", {"output": {"user": "{{$context.user}}"}})
        context = ExecutionContext.create("wf", metadata={"user": "alice"})
        assert node.resolve_dynamic_settings({}, context) == {"output": {"user": "alice"}}
        assert node.original_settings == {"output": {"user": "{{$context.user}}"}}


class TestExecutionContext:
    def test_publish_is_write_once(self):
        context = ExecutionContext.create("wf")
        context.publish("A", {"x": 1})
        assert context.get_result("A") == {"x": 1}
        with pytest.raises(RuntimeError):
            context.publish("A", {"x": 2})

    def test_expression_scope(self):
        context = ExecutionContext.create("wf", execution_id="run-1", metadata={"user": "alice"})
        scope = context.for_node("n1").expression_scope()
        assert scope == {"user": "alice", "workflow_id": "wf", "node_id": "n1", "execution_id": "run-1"}


class TestPolicy:
    def test_merge_overrides_only_set_fields(self):
        policy = ExecutionPolicy(max_retries=2)
        merged = policy.merge(NodePolicy(timeout=5, error_policy=ErrorPolicy.CONTINUE))
        assert merged.timeout == 5
        assert merged.error_policy == ErrorPolicy.CONTINUE
        assert merged.max_retries == 2
        assert policy.timeout is None

    def test_node_policy_dict(self):
        policy = NodePolicy.from_dict({"errorPolicy": "continue", "maxRetries": 3})
        assert policy.error_policy == ErrorPolicy.CONTINUE
        assert policy.to_dict() == {"errorPolicy": "continue", "maxRetries": 3}
        assert NodePolicy().is_empty()

    def test_invalid_policy(self):
        with pytest.raises(ValueError):
            ExecutionPolicy(max_retries=-1)
        with pytest.raises(ValueError):
            NodePolicy.from_dict({"errorPolicy": "explode"})

    def test_node_policy_limits(self):
        with pytest.raises(ValueError, match="max_retries"):
            NodePolicy.from_dict({"maxRetries": -1})
        with pytest.raises(ValueError, match="timeout"):
            NodePolicy.from_dict({"timeout": 0})
        with pytest.raises(ValueError, match="retry_backoff"):
            NodePolicy(retry_backoff=-0.5)
        with pytest.raises(TypeError):
            NodePolicy.from_dict({"maxRetries": "3"})
        with pytest.raises(TypeError):
            NodePolicy(timeout=True)


# ============================================================
# Graph Tests
# ============================================================

class TestWorkflow:
    """Tests for Workflow structure."""

    def test_add_nodes_and_connections(self):
        workflow = linear_workflow()
        assert list(workflow.nodes) == ["A", "B", "C"]
        assert len(workflow.connections) == 2
        assert [c.connection_id for c in workflow.get_outgoing("A")] == ["a-b"]
        assert [c.connection_id for c in workflow.get_incoming("C")] == ["b-c"]

    def test_duplicate_node_rejected(self):
        workflow = Workflow()
        workflow.add_node(StaticNode("A"))
        with pytest.raises(DuplicateNodeError):
            workflow.add_node(StaticNode("A"))

    def test_connection_to_missing_node_rejected(self):
        workflow = Workflow()
        workflow.add_node(StaticNode("A"))
        with pytest.raises(MissingNodeError):
            workflow.connect("A", "ghost")
        assert workflow.connections == {}

    def test_duplicate_connection_id_rejected(self):
        workflow = linear_workflow()
        with pytest.raises(Exception, match="already exists"):
            workflow.add_connection(Connection("a-b", "A", "C"))

    def test_self_loop_rejected(self):
        workflow = linear_workflow()
        with pytest.raises(CycleError):
            workflow.connect("A", "A")
        assert len(workflow.nodes) == 3
        assert len(workflow.connections) == 2

    def test_cycle_rejection_leaves_graph_unchanged(self):
        workflow = linear_workflow()
        before = dict(workflow.connections)
        with pytest.raises(CycleError):
            workflow.connect("C", "A", connection_id="c-a")
        assert workflow.connections == before
        assert workflow.get_execution_order() == ["A", "B", "C"]

    def test_remove_node_cascades(self):
        workflow = linear_workflow()
        workflow.remove_node("B")
        assert "B" not in workflow.nodes
        assert workflow.connections == {}

    def test_remove_connection(self):
        workflow = linear_workflow()
        removed = workflow.remove_connection("a-b")

        assert removed.target_node_id == "B"
        assert list(workflow.connections) == ["b-c"]
        assert workflow.get_incoming("B") == []
        with pytest.raises(StructuralError):
            workflow.remove_connection("a-b")

    def test_execution_order_respects_dependencies(self):
        workflow = Workflow()
        for node_id in ["D", "C", "B", "A"]:
            workflow.add_node(StaticNode(node_id))
        workflow.connect("A", "B")
        workflow.connect("A", "C")
        workflow.connect("B", "D")
        workflow.connect("C", "D")

        order = workflow.get_execution_order()
        assert order == ["A", "C", "B", "D"]
        for connection in workflow.connections.values():
            assert order.index(connection.source_node_id) < order.index(connection.target_node_id)

    def test_independent_nodes_keep_insertion_order(self):
        workflow = Workflow()
        for node_id in ["x", "a", "m"]:
            workflow.add_node(StaticNode(node_id))
        assert workflow.get_execution_order() == ["x", "a", "m"]

    def test_find_cycle(self):
        assert find_cycle({"a": ["b"], "b": ["c"], "c": []}) is None
        assert find_cycle({"a": ["b"], "b": ["c"], "c": ["a"]}) == ["a", "b", "c", "a"]

    def test_port_check(self):
        workflow = Workflow()
        workflow.add_node(TypedNode("first"))
        workflow.add_node(TypedNode("second"))
        with pytest.raises(IncompatiblePortsError):
            workflow.add_connection(
                Connection("c1", "first", "second", source_port="count", target_port="text"),
                check_ports=True,
            )
        workflow.add_connection(
            Connection("c2", "first", "second", source_port="summary", target_port="text"),
            check_ports=True,
        )
        assert list(workflow.connections) == ["c2"]

    def test_validate(self):
        assert Workflow().validate() == ["Workflow must have at least one node"]
        assert linear_workflow().validate() == []

        workflow = Workflow()
        workflow.add_node(StaticNode("A", {"output": {"x": "{{$result.B.value}}"}}))
        workflow.add_node(StaticNode("B", {"output": {"x": "{{$result.ghost.value}}"}}))
        errors = workflow.validate()
        assert any("unknown node 'ghost'" in e for e in errors)
        assert any("'A' references 'B'" in e for e in errors)

    def test_to_mermaid(self):
        workflow = linear_workflow()
        diagram = workflow.to_mermaid()
        assert diagram.startswith("graph TD")
        assert "A --> B" in diagram


# ============================================================
# Executor Tests
# ============================================================

class TestExecutor:
    """Tests for the workflow executor."""

    @pytest.mark.asyncio
    async def test_linear_workflow_resolves_upstream_results(self):
        result = await Executor(linear_workflow()).run()

        assert result.status == ExecutionStatus.COMPLETED
        assert result.outputs["C"] == {"text": "1"}
        assert result.outputs["B"] == {"inputs": {"value": 1}}
        assert [step.node_id for step in result.execution_log] == ["A", "B", "C"]
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_runs_are_repeatable(self):
        workflow = linear_workflow()
        first = await Executor(workflow).run()
        second = await Executor(workflow).run()

        assert first.outputs == second.outputs
        assert workflow.nodes["C"].original_settings == {"output": {"text": "{{$result.A.value}}"}}
        assert workflow.nodes["C"].execution_count == 2

    @pytest.mark.asyncio
    async def test_stop_policy_halts_run(self):
        workflow = Workflow()
        workflow.add_node(StaticNode("A", {"output": {"value": 1}}))
        workflow.add_node(FailingNode("B"))
        workflow.add_node(StaticNode("C"))
        workflow.connect("A", "B")
        workflow.connect("B", "C")

        result = await Executor(workflow, policy=ExecutionPolicy(error_policy=ErrorPolicy.STOP)).run()

        assert result.status == ExecutionStatus.ERROR
        assert set(result.results) == {"A", "B"}
        assert result.results["A"].success
        assert not result.results["B"].success
        assert len(result.errors) == 1
        assert isinstance(result.errors[0], ExecutionError)
        assert result.errors[0].node_id == "B"
        assert result.node_statuses["C"] == NodeStatus.IDLE.value

    @pytest.mark.asyncio
    async def test_continue_policy_skips_dependents_only(self):
        workflow = Workflow()
        workflow.add_node(StaticNode("A", {"output": {"value": 1}}))
        workflow.add_node(FailingNode("B", {"raise": True}))
        workflow.add_node(StaticNode("C"))
        workflow.add_node(StaticNode("D", {"output": {"done": True}}))
        workflow.connect("A", "B")
        workflow.connect("B", "C")
        workflow.connect("A", "D")

        result = await Executor(workflow, policy=ExecutionPolicy(error_policy=ErrorPolicy.CONTINUE)).run()

        assert result.status == ExecutionStatus.ERROR
        assert result.skipped == ["C"]
        assert result.outputs["D"] == {"done": True}
        assert str(result.errors[0]) == "boom"

    @pytest.mark.asyncio
    async def test_node_policy_overrides_run_policy(self):
        workflow = Workflow()
        workflow.add_node(FailingNode("bad", policy=NodePolicy(error_policy=ErrorPolicy.CONTINUE)))
        workflow.add_node(StaticNode("other", {"output": {"ok": True}}))

        result = await Executor(workflow, policy=ExecutionPolicy(error_policy=ErrorPolicy.STOP)).run()

        assert result.outputs["other"] == {"ok": True}
        assert result.status == ExecutionStatus.ERROR

    @pytest.mark.asyncio
    async def test_condition_branches(self):
        workflow = Workflow()
        workflow.add_node(StaticNode("source", {"output": {"value": 5}}))
        workflow.add_node(ConditionNode("check", {"condition_type": "expression", "condition": "value > 3"}))
        workflow.add_node(StaticNode("yes", {"output": {"branch": "true"}}))
        workflow.add_node(StaticNode("no", {"output": {"branch": "false"}}))
        workflow.add_node(StaticNode("after_no", {"output": {}}))
        workflow.connect("source", "check")
        workflow.connect("check", "yes", branch_index=0)
        workflow.connect("check", "no", branch_index=1)
        workflow.connect("no", "after_no")

        result = await Executor(workflow).run()

        assert result.status == ExecutionStatus.COMPLETED
        assert result.results["check"].branch == 0
        assert result.outputs["yes"] == {"branch": "true"}
        assert result.skipped == ["no", "after_no"]

    @pytest.mark.asyncio
    async def test_connection_guards(self):
        workflow = Workflow()
        workflow.add_node(StaticNode("A", {"output": {"n": 5}}))
        workflow.add_node(RecordingNode("big"))
        workflow.add_node(RecordingNode("small"))
        workflow.connect("A", "big", guard="value['n'] > 10")
        workflow.connect("A", "small", guard="value['n'] <= 10")

        result = await Executor(workflow).run()

        assert result.skipped == ["big"]
        assert result.outputs["small"] == {"inputs": {"n": 5}}

    @pytest.mark.asyncio
    async def test_failing_guard_deactivates_connection(self):
        workflow = Workflow()
        workflow.add_node(StaticNode("A", {"output": {"n": 5}}))
        workflow.add_node(RecordingNode("B"))
        workflow.connect("A", "B", guard="value['missing'] > 1")

        result = await Executor(workflow).run()

        assert result.skipped == ["B"]
        assert result.status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_port_mapping(self):
        workflow = Workflow()
        workflow.add_node(StaticNode("A", {"output": {"x": 1, "y": 2}}))
        workflow.add_node(RecordingNode("picked"))
        workflow.add_node(RecordingNode("whole"))
        workflow.add_node(RecordingNode("missing"))
        workflow.connect("A", "picked", source_port="x", target_port="in")
        workflow.connect("A", "whole", target_port="all")
        workflow.connect("A", "missing", source_port="zzz")

        result = await Executor(workflow).run()

        assert result.outputs["picked"] == {"inputs": {"in": 1}}
        assert result.outputs["whole"] == {"inputs": {"all": {"x": 1, "y": 2}}}
        assert result.outputs["missing"] == {"inputs": {}}

    @pytest.mark.asyncio
    async def test_missing_required_input_fails_node(self):
        workflow = Workflow()
        workflow.add_node(TypedNode("typed"))

        result = await Executor(workflow).run()

        assert result.status == ExecutionStatus.ERROR
        assert "Required input 'text'" in str(result.errors[0])

    @pytest.mark.asyncio
    async def test_timeout(self):
        workflow = Workflow()
        workflow.add_node(SlowNode("slow", {"delay": 1.0}, policy=NodePolicy(timeout=0.05)))

        result = await Executor(workflow).run()

        assert result.status == ExecutionStatus.ERROR
        assert isinstance(result.errors[0], NodeTimeoutError)
        assert result.errors[0].node_id == "slow"

    @pytest.mark.asyncio
    async def test_retry_succeeds(self):
        workflow = Workflow()
        flaky = FlakyNode("flaky", fail_times=2, policy=NodePolicy(max_retries=2, retry_backoff=0))
        workflow.add_node(flaky)

        result = await Executor(workflow).run()

        assert result.status == ExecutionStatus.COMPLETED
        assert result.outputs["flaky"] == {"calls": 3}
        assert result.execution_log[0].attempts == 3

    @pytest.mark.asyncio
    async def test_retry_exhausted(self):
        workflow = Workflow()
        workflow.add_node(FlakyNode("flaky", fail_times=5, policy=NodePolicy(max_retries=1, retry_backoff=0)))

        result = await Executor(workflow).run()

        assert result.status == ExecutionStatus.ERROR
        error = result.errors[0]
        assert isinstance(error, RetryExhaustedError)
        assert error.attempts == 2
        assert error.node_id == "flaky"

    @pytest.mark.asyncio
    async def test_cycle_at_run_time_reported(self):
        workflow = linear_workflow()
        # Bypass add_connection to simulate a corrupted graph
        workflow.connections["c-a"] = Connection("c-a", "C", "A")

        result = await Executor(workflow).run()

        assert result.status == ExecutionStatus.ERROR
        assert isinstance(result.errors[0], WorkflowError)
        assert result.results == {}

    @pytest.mark.asyncio
    async def test_invalid_node_policy_is_recorded(self):
        workflow = Workflow()
        workflow.add_node(StaticNode("A", {"output": {"value": 1}}, policy=NodePolicy()))
        workflow.add_node(StaticNode("B"))
        workflow.connect("A", "B")
        workflow.nodes["A"].policy.max_retries = -1

        result = await Executor(workflow).run()

        assert result.status == ExecutionStatus.ERROR
        assert isinstance(result.errors[0], ExecutionError)
        assert "Invalid policy" in str(result.errors[0])
        assert result.node_statuses["A"] == "error"
        assert result.results["A"].success is False
        assert "B" not in result.results

    @pytest.mark.asyncio
    async def test_failing_port_condition_withholds_value(self):
        class ConditionalNode(StaticNode):
            def define_ports(self):
                self.add_output_port("x", condition=lambda value, context: value["missing"])

        workflow = Workflow()
        workflow.add_node(ConditionalNode("A", {"output": {"x": 1}}))
        workflow.add_node(RecordingNode("B"))
        workflow.connect("A", "B", source_port="x")

        result = await Executor(workflow).run()

        assert result.status == ExecutionStatus.COMPLETED
        assert result.outputs["B"] == {"inputs": {}}

    @pytest.mark.asyncio
    async def test_executor_runs_once(self):
        workflow = Workflow()
        workflow.add_node(FailingNode("A"))
        executor = Executor(workflow)

        result = await executor.run()
        assert result.status == ExecutionStatus.ERROR

        with pytest.raises(RuntimeError, match="already been executed"):
            await executor.run()

    @pytest.mark.asyncio
    async def test_execution_summary(self):
        workflow = linear_workflow()
        workflow.add_node(FailingNode("D"))
        workflow.connect("A", "D")
        executor = Executor(workflow, run_id="r-summary", policy=ExecutionPolicy(error_policy=ErrorPolicy.CONTINUE))

        await executor.run()
        summary = executor.get_execution_summary()

        assert summary["run_id"] == "r-summary"
        assert summary["status"] == "error"
        assert summary["completed"] == ["A", "B", "C"]
        assert summary["failed"] == ["D"]

    @pytest.mark.asyncio
    async def test_cancel_before_start(self):
        executor = Executor(linear_workflow())
        executor.cancel()

        result = await executor.run()

        assert result.status == ExecutionStatus.CANCELLED
        assert result.results == {}

    @pytest.mark.asyncio
    async def test_pause_and_resume(self):
        executor = Executor(linear_workflow())
        executor.pause()
        task = asyncio.create_task(executor.run())

        await asyncio.sleep(0.05)
        assert executor.status == ExecutionStatus.PAUSED
        assert not task.done()

        executor.resume()
        result = await task

        assert result.status == ExecutionStatus.COMPLETED
        assert len(result.results) == 3

    @pytest.mark.asyncio
    async def test_step_callback(self):
        seen = []

        async def on_step(step, result):
            seen.append((step.node_id, step.result))

        await Executor(linear_workflow(), on_step=on_step).run()

        assert seen == [("A", "success"), ("B", "success"), ("C", "success")]

    @pytest.mark.asyncio
    async def test_failing_step_callback_does_not_break_run(self):
        def on_step(step, result):
            raise RuntimeError("callback failed")

        result = await Executor(linear_workflow(), on_step=on_step).run()
        assert result.status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_execute_workflow_with_metadata(self):
        workflow = Workflow(workflow_id="meta")
        workflow.add_node(StaticNode("A", {"output": {"user": "{{$context.user}}", "wf": "{{$context.workflow_id}}"}}))

        result = await execute_workflow(workflow, metadata={"user": "alice"}, run_id="run-42")

        assert result.run_id == "run-42"
        assert result.outputs["A"] == {"user": "alice", "wf": "meta"}

    @pytest.mark.asyncio
    async def test_result_to_dict(self):
        result = await Executor(linear_workflow(), run_id="r1").run()
        data = result.to_dict()

        assert data["run_id"] == "r1"
        assert data["status"] == "completed"
        assert data["results"]["A"]["data"] == {"value": 1}
        assert len(data["execution_log"]) == 3

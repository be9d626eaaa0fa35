"""
Condition node: routes a workflow down one of two branches.

Connections leaving a condition node use branch_index 0 for the true
branch and 1 for the false branch.
"""

from typing import Any, Dict

from nodeflow.engine.node import BaseNode, ExecutionResult
from nodeflow.engine.ports import PortType
from nodeflow.engine.safe_eval import safe_eval
from nodeflow.engine.state import ExecutionContext
from nodeflow.nodes.registry import register_node


TRUE_BRANCH = 0
FALSE_BRANCH = 1


@register_node("condition")
class ConditionNode(BaseNode):
    """
    Evaluates a condition over its input value.

    Settings:
        condition_type: "simple" (truthiness of value) or "expression"
        condition: Expression over ``value`` and ``inputs``,
            e.g. "value['count'] > 10"
    """

    display_name = "Condition"
    category = "logic"

    def define_ports(self) -> None:
        self.add_input_port("value", PortType.ANY, description="Value to test")
        self.add_input_port("condition", PortType.STRING, description="Overrides the condition setting")
        self.add_output_port("result", PortType.BOOLEAN)
        self.add_output_port("value", PortType.ANY, description="The tested value, passed through")

    def evaluate(self, inputs: Dict[str, Any]) -> bool:
        value = inputs.get("value")
        if self.settings.get("condition_type", "simple") != "expression":
            return bool(value)

        condition = inputs.get("condition") or self.settings.get("condition")
        if not condition:
            raise ValueError(f"Condition node '{self.node_id}' has no condition expression")
        try:
            return bool(safe_eval(condition, {"value": value, "inputs": inputs}))
        except (SyntaxError, ValueError, TypeError, LookupError, ArithmeticError) as e:
            raise ValueError(f"Condition evaluation failed: {e}") from e

    async def execute(self, inputs: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
        result = self.evaluate(inputs)
        return ExecutionResult.ok(
            {"result": result, "value": inputs.get("value")},
            branch=TRUE_BRANCH if result else FALSE_BRANCH,
        )

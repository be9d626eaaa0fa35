"""
Order Review Demo Workflow.

A sample workflow demonstrating the engine capabilities:
1. A trigger emits an order payload
2. A code node totals the order
3. A condition node checks the total against a threshold
4. Large orders go to an agent for review (true branch)
5. Small orders are approved by a code node (false branch)
"""

import logging

from nodeflow.engine.graph import Workflow
from nodeflow.nodes.agent import AgentNode
from nodeflow.nodes.code import CodeNode
from nodeflow.nodes.condition import ConditionNode, FALSE_BRANCH, TRUE_BRANCH
from nodeflow.nodes.trigger import TimerTriggerNode
from nodeflow.serialization import WorkflowSerializer


logger = logging.getLogger(__name__)

DEMO_WORKFLOW_ID = "demo-workflow"

TOTAL_ORDER_CODE = """
items = inputs["payload"]["items"]
total = sum(item["price"] * item["quantity"] for item in items)
return {"total": round(total, 2), "count": len(items)}
"""

APPROVE_ORDER_CODE = """
return {"approved": True, "total": inputs["value"]["total"]}
"""

SAMPLE_ORDER = {
    "items": [
        {"sku": "KB-01", "price": 49.5, "quantity": 2},
        {"sku": "MS-07", "price": 25.0, "quantity": 1},
    ],
}


def create_demo_workflow(threshold: float = 100) -> Workflow:
    """
    Build the order review workflow.

    Args:
        threshold: Order total at or above which the agent reviews the order

    Returns:
        Workflow ready to execute
    """
    workflow = Workflow(
        workflow_id=DEMO_WORKFLOW_ID,
        name="Order Review Demo",
        description="Totals an order and routes large orders to an agent for review",
    )

    workflow.add_node(TimerTriggerNode("start", {"payload": SAMPLE_ORDER}, name="New order"))
    workflow.add_node(CodeNode("total", {"code": TOTAL_ORDER_CODE}, name="Total order"))
    workflow.add_node(ConditionNode(
        "check",
        {"condition_type": "expression", "condition": f"value['total'] >= {threshold}"},
        name="Large order?",
    ))
    workflow.add_node(AgentNode(
        "review",
        {
            "message": "Review order {{$context.execution_id}}: total {{$result.total.result.total}}",
            "enable_tools": True,
            "tools": ["calculator"],
        },
        name="Review order",
    ))
    workflow.add_node(CodeNode("approve", {"code": APPROVE_ORDER_CODE}, name="Auto-approve"))

    workflow.connect("start", "total", connection_id="start-total")
    workflow.connect("total", "check", connection_id="total-check", source_port="result", target_port="value")
    workflow.connect("check", "review", connection_id="check-review", branch_index=TRUE_BRANCH)
    workflow.connect("check", "approve", connection_id="check-approve", branch_index=FALSE_BRANCH)

    return workflow


async def register_demo_workflow() -> Workflow:
    """
    Register the demo workflow in storage.

    This makes the workflow available immediately via the API
    without needing to create it first.
    """
    from nodeflow.storage.memory import workflow_storage

    workflow = create_demo_workflow()

    await workflow_storage.save(
        workflow_id=workflow.workflow_id,
        name=workflow.name,
        definition=WorkflowSerializer().to_json(workflow),
    )

    logger.info(f"Registered demo workflow with ID: {DEMO_WORKFLOW_ID}")
    return workflow

"""
Tests for the API endpoints.
"""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketDisconnect
from httpx import AsyncClient, ASGITransport

from nodeflow.engine.graph import Workflow
from nodeflow.engine.node import BaseNode, ExecutionResult
from nodeflow.main import app
from nodeflow.nodes import CodeNode, TimerTriggerNode, node_registry
from nodeflow.serialization import WorkflowSerializer
from nodeflow.storage.memory import workflow_storage
from nodeflow.workflows.demo import create_demo_workflow


@node_registry.register("test-pause")
class PauseNode(BaseNode):
    """Sleeps for its "delay" setting so a run can be interrupted."""

    async def execute(self, inputs, context):
        await asyncio.sleep(self.settings.get("delay", 0.1))
        return ExecutionResult.ok({"waited": True})


@pytest.fixture
def client():
    """Test client with the application lifespan (demo workflow registered)."""
    with TestClient(app) as test_client:
        yield test_client


def workflow_payload(workflow_id: str = "api-test", fail: bool = False) -> dict:
    workflow = Workflow(workflow_id=workflow_id, name="API Test")
    workflow.add_node(TimerTriggerNode("start", {"payload": {"n": 3}}))
    code = "return 1 / 0" if fail else "return inputs['payload']['n'] + 1"
    workflow.add_node(CodeNode("add", {"code": code}))
    workflow.connect("start", "add", connection_id="c1")
    return WorkflowSerializer().to_json(workflow)


# ============================================================
# Root Endpoint Tests
# ============================================================

class TestRootEndpoints:
    """Tests for root endpoints."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Nodeflow"
        assert data["demo_workflow"] == "demo-workflow"

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["workflows_count"] >= 1


# ============================================================
# Node Type and Tool Endpoint Tests
# ============================================================

class TestNodeTypeEndpoints:
    def test_list_node_types(self, client):
        response = client.get("/nodes/types")
        assert response.status_code == 200
        data = response.json()
        types = {t["type"]: t for t in data["node_types"]}
        assert {"timer-trigger", "http-request", "code", "condition", "agent"} <= set(types)
        assert types["condition"]["category"] == "logic"
        assert [p["id"] for p in types["condition"]["output_ports"]] == ["result", "value"]


class TestToolEndpoints:
    """Tests for tool endpoints."""

    def test_list_tools(self, client):
        response = client.get("/tools")
        assert response.status_code == 200
        data = response.json()
        tool_ids = [t["id"] for t in data["tools"]]
        assert "calculator" in tool_ids
        assert data["total"] == len(tool_ids)

    def test_list_tools_by_category(self, client):
        response = client.get("/tools", params={"category": "math"})
        assert [t["id"] for t in response.json()["tools"]] == ["calculator"]

    def test_get_tool(self, client):
        response = client.get("/tools/calculator")
        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Calculator"
        assert "expression" in data["parameters"]["properties"]

    def test_get_nonexistent_tool(self, client):
        response = client.get("/tools/nonexistent_tool")
        assert response.status_code == 404

    def test_execute_tool(self, client):
        response = client.post("/tools/calculator/execute", json={"input": {"expression": "2 + 3 * 4"}})
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["data"]["result"] == 14

    def test_execute_tool_invalid_input(self, client):
        response = client.post("/tools/calculator/execute", json={"input": {}})
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["error"].startswith("Invalid input")

    def test_execute_nonexistent_tool(self, client):
        response = client.post("/tools/nonexistent/execute", json={"input": {}})
        assert response.status_code == 404


# ============================================================
# Workflow Endpoint Tests
# ============================================================

class TestWorkflowEndpoints:
    """Tests for workflow endpoints."""

    def test_demo_workflow_registered(self, client):
        response = client.get("/workflows/demo-workflow")
        assert response.status_code == 200
        data = response.json()
        assert data["node_count"] == 5
        assert data["execution_order"] == ["start", "total", "check", "review", "approve"]
        assert data["mermaid_diagram"].startswith("graph TD")

    def test_list_workflows(self, client):
        response = client.get("/workflows")
        assert response.status_code == 200
        ids = [w["workflow_id"] for w in response.json()["workflows"]]
        assert "demo-workflow" in ids

    def test_create_workflow(self, client):
        response = client.post("/workflows", json=workflow_payload("created"))
        assert response.status_code == 201
        data = response.json()
        assert data["workflow_id"] == "created"
        assert data["node_count"] == 2
        assert data["connection_count"] == 1
        assert data["warnings"] == []

    def test_create_workflow_unknown_type(self, client):
        payload = workflow_payload("bad-type")
        payload["nodes"][0]["config"]["type"] = "nonexistent-type"

        response = client.post("/workflows", json=payload)

        assert response.status_code == 400
        assert "nonexistent-type" in response.json()["detail"]

    def test_create_workflow_with_cycle(self, client):
        payload = workflow_payload("cyclic")
        payload["connections"].append({"id": "back", "sourceNodeId": "add", "targetNodeId": "start"})

        response = client.post("/workflows", json=payload)

        assert response.status_code == 400

    def test_create_workflow_with_invalid_policy(self, client):
        payload = workflow_payload("bad-policy")
        payload["nodes"][1]["policy"] = {"maxRetries": -1}

        assert client.post("/workflows/validate", json=payload).json()["issues"][0]["path"] == "nodes.1.policy"
        assert client.post("/workflows", json=payload).status_code == 400

    def test_validate_workflow(self, client):
        response = client.post("/workflows/validate", json=workflow_payload())
        assert response.json() == {"valid": True, "issues": []}

        payload = workflow_payload()
        payload["connections"][0]["targetNodeId"] = "ghost"
        response = client.post("/workflows/validate", json=payload)
        data = response.json()
        assert data["valid"] is False
        assert data["issues"][0]["path"] == "connections.0.targetNodeId"

    def test_export_workflow(self, client):
        client.post("/workflows", json=workflow_payload("exported"))

        response = client.get("/workflows/exported/export")

        assert response.status_code == 200
        assert "workflow-exported-" in response.headers["content-disposition"]
        assert response.json()["config"]["id"] == "exported"

    def test_delete_workflow(self, client):
        client.post("/workflows", json=workflow_payload("to-delete"))

        response = client.delete("/workflows/to-delete")
        assert response.status_code == 204

        response = client.get("/workflows/to-delete")
        assert response.status_code == 404

    def test_get_nonexistent_workflow(self, client):
        response = client.get("/workflows/nonexistent-id")
        assert response.status_code == 404


# ============================================================
# Run Endpoint Tests
# ============================================================

class TestRunEndpoints:
    """Tests for running workflows."""

    def test_run_demo_workflow(self, client):
        response = client.post("/workflows/run", json={"workflow_id": "demo-workflow"})
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "completed"
        assert data["skipped"] == ["approve"]
        assert data["results"]["total"]["data"] == {"result": {"total": 124.0, "count": 2}}
        assert data["results"]["review"]["data"]["response"].startswith("AI response: Review order")
        assert [entry["node_id"] for entry in data["execution_log"]] == [
            "start", "total", "check", "review", "approve",
        ]

    def test_run_and_poll(self, client):
        client.post("/workflows", json=workflow_payload("polled"))

        response = client.post("/workflows/run", json={"workflow_id": "polled", "metadata": {"user": "alice"}})
        run_id = response.json()["run_id"]

        response = client.get(f"/workflows/runs/{run_id}")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["results"]["add"]["data"] == {"result": 4}

        response = client.get("/workflows/runs", params={"workflow_id": "polled"})
        assert [run["run_id"] for run in response.json()["runs"]] == [run_id]

    def test_failed_run(self, client):
        client.post("/workflows", json=workflow_payload("failing", fail=True))

        response = client.post("/workflows/run", json={"workflow_id": "failing"})

        data = response.json()
        assert data["status"] == "error"
        assert data["errors"][0]["node_id"] == "add"
        assert data["errors"][0]["type"] == "ExecutionError"

    def test_run_with_policy(self, client):
        client.post("/workflows", json=workflow_payload("retried", fail=True))

        response = client.post("/workflows/run", json={
            "workflow_id": "retried",
            "policy": {"max_retries": 1, "retry_backoff": 0},
        })

        data = response.json()
        assert data["errors"][0]["type"] == "RetryExhaustedError"
        assert data["execution_log"][1]["attempts"] == 2

    def test_run_with_invalid_policy(self, client):
        response = client.post("/workflows/run", json={
            "workflow_id": "demo-workflow",
            "policy": {"error_policy": "explode"},
        })
        assert response.status_code == 400

    def test_async_execution(self, client):
        response = client.post("/workflows/run", json={"workflow_id": "demo-workflow", "async_execution": True})
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "pending"

        response = client.get(f"/workflows/runs/{data['run_id']}")
        assert response.status_code == 200
        assert response.json()["status"] == "completed"

    def test_control_finished_run(self, client):
        run_id = client.post("/workflows/run", json={"workflow_id": "demo-workflow"}).json()["run_id"]

        response = client.post(f"/workflows/runs/{run_id}/cancel")
        assert response.status_code == 409

    def test_control_unknown_run(self, client):
        assert client.post("/workflows/runs/nope/cancel").status_code == 404
        run_id = client.post("/workflows/run", json={"workflow_id": "demo-workflow"}).json()["run_id"]
        assert client.post(f"/workflows/runs/{run_id}/explode").status_code == 404

    def test_get_nonexistent_run(self, client):
        response = client.get("/workflows/runs/nonexistent-run")
        assert response.status_code == 404

    def test_run_nonexistent_workflow(self, client):
        response = client.post("/workflows/run", json={"workflow_id": "nonexistent-workflow"})
        assert response.status_code == 404


# ============================================================
# WebSocket Tests
# ============================================================

class TestWebSocket:
    def test_stream_run(self, client):
        with client.websocket_connect("/ws/run/demo-workflow") as websocket:
            websocket.send_json({"action": "start", "metadata": {"user": "alice"}})

            started = websocket.receive_json()
            assert started["type"] == "started"

            messages = []
            while True:
                message = websocket.receive_json()
                messages.append(message)
                if message["type"] == "completed":
                    break

        steps = [m for m in messages if m["type"] == "step"]
        assert [s["node_id"] for s in steps] == ["start", "total", "check", "review", "approve"]
        assert steps[-1]["result"] == "skipped"
        assert messages[-1]["status"] == "completed"
        assert messages[-1]["run_id"] == started["run_id"]

    def test_disconnect_cancels_and_stores_run(self, client):
        workflow = Workflow(workflow_id="ws-slow", name="Slow")
        workflow.add_node(TimerTriggerNode("start"))
        workflow.add_node(PauseNode("wait", {"delay": 0.3}))
        workflow.add_node(CodeNode("after", {"code": "return 1"}))
        workflow.connect("start", "wait")
        workflow.connect("wait", "after")
        client.post("/workflows", json=WorkflowSerializer().to_json(workflow))

        with client.websocket_connect("/ws/run/ws-slow") as websocket:
            websocket.send_json({"action": "start"})
            run_id = websocket.receive_json()["run_id"]
            assert websocket.receive_json()["node_id"] == "start"

        run = client.get(f"/workflows/runs/{run_id}").json()
        for _ in range(50):
            if run["status"] not in ("pending", "running"):
                break
            time.sleep(0.05)
            run = client.get(f"/workflows/runs/{run_id}").json()

        assert run["status"] == "cancelled"
        assert "wait" in run["results"]
        assert "after" not in run["results"]

    def test_expects_start_action(self, client):
        with client.websocket_connect("/ws/run/demo-workflow") as websocket:
            websocket.send_json({"action": "go"})
            message = websocket.receive_json()
            assert message == {"type": "error", "error": "Expected 'start' action"}

    def test_unknown_workflow(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/run/missing") as websocket:
                websocket.receive_json()


# ============================================================
# Async Tests (for async endpoints)
# ============================================================

@pytest.mark.asyncio
async def test_run_workflow_with_async_client():
    """Run a workflow through an async HTTP client."""
    workflow = create_demo_workflow(threshold=1000)
    await workflow_storage.save(
        workflow_id="demo-high-threshold",
        name=workflow.name,
        definition=WorkflowSerializer().to_json(workflow),
    )

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        response = await ac.post("/workflows/run", json={"workflow_id": "demo-high-threshold"})

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "completed"
    assert data["skipped"] == ["review"]
    assert data["results"]["approve"]["data"] == {"result": {"approved": True, "total": 124.0}}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

"""
Workflow serialization.

Converts workflows to and from the portable JSON representation:

    {
      "config": {"id": ..., "name": ...},
      "nodes": [{"config": {"id", "name", "type"},
                 "settings": {...}, "originalSettings": {...},
                 "policy": {...}}],
      "connections": [{"id", "sourceNodeId", "targetNodeId",
                       "branchIndex"?, "guard"?, "sourcePort"?, "targetPort"?}],
      "metadata": {"version", "createdAt", "updatedAt", "description"?}
    }

Loading re-validates the structure through the normal Workflow APIs, so a
stored file can never produce a graph that could not have been built by
hand.
"""

from typing import Any, Dict, List, Optional, Sequence, Set
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from copy import deepcopy
import json
import logging

from pydantic import BaseModel, Field, ValidationError

from nodeflow.engine.errors import StructuralError, UnknownTypeError
from nodeflow.engine.graph import Connection, Workflow, find_cycle
from nodeflow.engine.policy import NodePolicy
from nodeflow.nodes.registry import NodeRegistry, initialize_builtin_types, node_registry


logger = logging.getLogger(__name__)

FORMAT_VERSION = "1.0.0"


# ============================================================
# Persisted schema
# ============================================================

class NodeConfigModel(BaseModel):
    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    type: str = Field(..., min_length=1)


class SerializedNode(BaseModel):
    config: NodeConfigModel
    settings: Dict[str, Any]
    original_settings: Optional[Dict[str, Any]] = Field(None, alias="originalSettings")
    policy: Optional[Dict[str, Any]] = None

    class Config:
        populate_by_name = True


class SerializedConnection(BaseModel):
    id: str = Field(..., min_length=1)
    source_node_id: str = Field(..., alias="sourceNodeId", min_length=1)
    target_node_id: str = Field(..., alias="targetNodeId", min_length=1)
    branch_index: Optional[int] = Field(None, alias="branchIndex")
    guard: Optional[str] = None
    source_port: Optional[str] = Field(None, alias="sourcePort")
    target_port: Optional[str] = Field(None, alias="targetPort")

    class Config:
        populate_by_name = True


class WorkflowConfigModel(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)


class WorkflowMetadataModel(BaseModel):
    version: str = FORMAT_VERSION
    created_at: Optional[str] = Field(None, alias="createdAt")
    updated_at: Optional[str] = Field(None, alias="updatedAt")
    description: Optional[str] = None

    class Config:
        populate_by_name = True


class SerializedWorkflow(BaseModel):
    config: WorkflowConfigModel
    nodes: List[SerializedNode]
    connections: List[SerializedConnection]
    metadata: Optional[WorkflowMetadataModel] = None


@dataclass
class ValidationIssue:
    """A problem found while validating a serialized workflow."""
    path: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "message": self.message}

    def __str__(self) -> str:
        return f"{self.path}: {self.message}" if self.path else self.message


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================================
# Serializer
# ============================================================

class WorkflowSerializer:
    """
    Converts workflows to and from their persisted representation.

    Usage:
        serializer = WorkflowSerializer()
        payload = serializer.to_json(workflow)
        restored = serializer.from_json(payload)
    """

    def __init__(self, registry: Optional[NodeRegistry] = None):
        self.registry = registry or node_registry

    def to_json(self, workflow: Workflow) -> Dict[str, Any]:
        """Serialize a workflow to a JSON-compatible dict."""
        nodes = []
        for node_id, node in workflow.nodes.items():
            serialized = {
                "config": {"id": node_id, "name": node.name, "type": node.node_type},
                "settings": deepcopy(node.settings),
                "originalSettings": deepcopy(node.original_settings),
            }
            if node.policy is not None and not node.policy.is_empty():
                serialized["policy"] = node.policy.to_dict()
            nodes.append(serialized)

        metadata = {
            "version": workflow.metadata.get("version", FORMAT_VERSION),
            "createdAt": workflow.metadata.get("createdAt") or _now(),
            "updatedAt": _now(),
        }
        if workflow.description:
            metadata["description"] = workflow.description

        return {
            "config": {"id": workflow.workflow_id, "name": workflow.name},
            "nodes": nodes,
            "connections": [c.to_dict() for c in workflow.connections.values()],
            "metadata": metadata,
        }

    def from_json(self, payload: Dict[str, Any]) -> Workflow:
        """
        Rebuild a workflow from its serialized form.

        Every type tag is checked before any node is built, and every
        connection is re-added through Workflow.add_connection.

        Raises:
            StructuralError: Malformed payload or invalid graph structure
            UnknownTypeError: A node type tag is not registered
        """
        initialize_builtin_types()

        try:
            model = SerializedWorkflow.model_validate(payload)
        except ValidationError as e:
            raise StructuralError(f"Malformed workflow payload: {e}") from e

        for serialized in model.nodes:
            if not self.registry.is_registered(serialized.config.type):
                raise UnknownTypeError(
                    serialized.config.type,
                    f"Unknown node type: {serialized.config.type} (node '{serialized.config.id}')",
                )

        metadata = model.metadata or WorkflowMetadataModel()
        workflow = Workflow(
            workflow_id=model.config.id,
            name=model.config.name,
            description=metadata.description or "",
            metadata={
                "version": metadata.version,
                "createdAt": metadata.created_at,
                "updatedAt": metadata.updated_at,
            },
        )

        for serialized in model.nodes:
            config = serialized.config
            raw_settings = serialized.original_settings
            if raw_settings is None:
                raw_settings = serialized.settings
            try:
                node = self.registry.create(
                    config.type,
                    config.id,
                    deepcopy(raw_settings),
                    name=config.name,
                    policy=NodePolicy.from_dict(serialized.policy) if serialized.policy else None,
                )
            except (TypeError, ValueError) as e:
                raise StructuralError(f"Failed to create node {config.id} of type {config.type}: {e}") from e
            node.settings = deepcopy(serialized.settings)
            workflow.add_node(node)

        for serialized in model.connections:
            workflow.add_connection(Connection(
                connection_id=serialized.id,
                source_node_id=serialized.source_node_id,
                target_node_id=serialized.target_node_id,
                branch_index=serialized.branch_index,
                guard=serialized.guard,
                source_port=serialized.source_port,
                target_port=serialized.target_port,
            ))

        logger.debug(f"Loaded workflow '{workflow.workflow_id}' ({len(workflow.nodes)} nodes)")
        return workflow

    def validate(self, payload: Any) -> List[ValidationIssue]:
        """
        Pre-flight check of a serialized workflow.

        Checks the payload shape, node type tags, id uniqueness, connection
        endpoints and acyclicity without instantiating any node.

        Returns:
            List of issues (empty if the payload can be loaded)
        """
        initialize_builtin_types()

        if not isinstance(payload, dict):
            return [ValidationIssue("", "Workflow must be an object")]

        try:
            model = SerializedWorkflow.model_validate(payload)
        except ValidationError as e:
            return [
                ValidationIssue(".".join(str(part) for part in error["loc"]), error["msg"])
                for error in e.errors()
            ]

        issues: List[ValidationIssue] = []
        node_ids: Set[str] = set()
        for index, serialized in enumerate(model.nodes):
            path = f"nodes.{index}"
            if not self.registry.is_registered(serialized.config.type):
                issues.append(ValidationIssue(f"{path}.config.type", f"Unknown node type: {serialized.config.type}"))
            if serialized.config.id in node_ids:
                issues.append(ValidationIssue(f"{path}.config.id", f"Duplicate node id: {serialized.config.id}"))
            node_ids.add(serialized.config.id)
            if serialized.policy:
                try:
                    NodePolicy.from_dict(serialized.policy)
                except (TypeError, ValueError) as e:
                    issues.append(ValidationIssue(f"{path}.policy", str(e)))

        connection_ids: Set[str] = set()
        adjacency: Dict[str, List[str]] = {node_id: [] for node_id in node_ids}
        for index, serialized in enumerate(model.connections):
            path = f"connections.{index}"
            if serialized.id in connection_ids:
                issues.append(ValidationIssue(f"{path}.id", f"Duplicate connection id: {serialized.id}"))
            connection_ids.add(serialized.id)
            endpoints_ok = True
            for field_name, node_id in (("sourceNodeId", serialized.source_node_id),
                                        ("targetNodeId", serialized.target_node_id)):
                if node_id not in node_ids:
                    issues.append(ValidationIssue(f"{path}.{field_name}", f"Unknown node: {node_id}"))
                    endpoints_ok = False
            if endpoints_ok:
                adjacency[serialized.source_node_id].append(serialized.target_node_id)

        cycle = find_cycle(adjacency)
        if cycle:
            issues.append(ValidationIssue("connections", f"Cycle detected: {' -> '.join(cycle)}"))

        return issues

    def is_valid(self, payload: Any) -> bool:
        return not self.validate(payload)

    # ------------------------------------------------------------
    # Text and file helpers
    # ------------------------------------------------------------

    def to_formatted_json(self, workflow: Workflow, indent: int = 2) -> str:
        return json.dumps(self.to_json(workflow), indent=indent, ensure_ascii=False, default=str)

    def from_json_string(self, text: str) -> Workflow:
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise StructuralError(f"Failed to parse JSON: {e}") from e
        return self.from_json(payload)

    def export_filename(self, workflow: Workflow) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
        return f"workflow-{workflow.workflow_id}-{timestamp}.json"

    def export_to_file(self, workflow: Workflow, directory: Path) -> Path:
        """Write the workflow as formatted JSON into a directory."""
        path = Path(directory) / self.export_filename(workflow)
        path.write_text(self.to_formatted_json(workflow), encoding="utf-8")
        logger.info(f"Exported workflow '{workflow.workflow_id}' to {path}")
        return path

    def import_from_file(self, path: Path) -> Workflow:
        """
        Load a workflow file, validating it first.

        Raises:
            StructuralError: If the file is not valid JSON or fails validation
        """
        try:
            payload = json.loads(Path(path).read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise StructuralError(f"Failed to parse {path}: {e}") from e

        issues = self.validate(payload)
        if issues:
            raise StructuralError(f"Invalid workflow format: {', '.join(str(i) for i in issues)}")
        return self.from_json(payload)

    # ------------------------------------------------------------
    # Comparison and templates
    # ------------------------------------------------------------

    def equals(self, first: Workflow, second: Workflow) -> bool:
        """Compare two workflows, ignoring timestamps."""
        def stripped(workflow: Workflow) -> Dict[str, Any]:
            payload = self.to_json(workflow)
            payload["metadata"].pop("createdAt", None)
            payload["metadata"].pop("updatedAt", None)
            return payload

        return stripped(first) == stripped(second)

    def summary(self, workflow: Workflow) -> Dict[str, Any]:
        node_types: Dict[str, int] = {}
        for node in workflow.nodes.values():
            node_types[node.node_type] = node_types.get(node.node_type, 0) + 1
        errors = workflow.validate()
        return {
            "node_count": len(workflow.nodes),
            "connection_count": len(workflow.connections),
            "node_types": node_types,
            "has_errors": bool(errors),
            "errors": errors,
        }

    @staticmethod
    def create_template(workflow_id: str, name: str, description: Optional[str] = None) -> Dict[str, Any]:
        """An empty serialized workflow to start from."""
        now = _now()
        return {
            "config": {"id": workflow_id, "name": name},
            "nodes": [],
            "connections": [],
            "metadata": {
                "version": FORMAT_VERSION,
                "createdAt": now,
                "updatedAt": now,
                "description": description or f"Template for {name}",
            },
        }

    def merge_workflows(
        self,
        target: Workflow,
        sources: Sequence[Workflow],
        node_id_prefix: str = "merged",
        preserve_original_ids: bool = False,
    ) -> Workflow:
        """
        Combine workflows into a new one.

        Nodes from each source are renamed to ``<prefix>_<i>_<id>_<n>``
        unless preserve_original_ids is set and the id is still free.
        Expressions inside merged settings are not rewritten.
        """
        payload = self.to_json(target)
        used_ids = {node["config"]["id"] for node in payload["nodes"]}

        for index, source in enumerate(sources):
            source_payload = self.to_json(source)
            id_map: Dict[str, str] = {}

            for node in source_payload["nodes"]:
                original_id = node["config"]["id"]
                new_id = original_id
                if not preserve_original_ids or new_id in used_ids:
                    counter = 1
                    new_id = f"{node_id_prefix}_{index}_{original_id}_{counter}"
                    while new_id in used_ids:
                        counter += 1
                        new_id = f"{node_id_prefix}_{index}_{original_id}_{counter}"
                id_map[original_id] = new_id
                used_ids.add(new_id)
                node["config"]["id"] = new_id
                payload["nodes"].append(node)

            for connection in source_payload["connections"]:
                connection["id"] = f"{node_id_prefix}_{index}_{connection['id']}"
                connection["sourceNodeId"] = id_map[connection["sourceNodeId"]]
                connection["targetNodeId"] = id_map[connection["targetNodeId"]]
                payload["connections"].append(connection)

        description = payload["metadata"].get("description", "")
        payload["metadata"]["description"] = f"{description} (merged with {len(sources)} workflows)".strip()
        return self.from_json(payload)

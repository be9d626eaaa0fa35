"""
Workflow Graph Definition.

A Workflow owns a set of nodes and the directed connections between them.
Every mutation keeps the graph valid: node ids are unique, connections
only join existing nodes, and a connection that would close a cycle is
rejected without touching the graph.
"""

from typing import Any, Dict, Iterable, List, Optional, Set
from dataclasses import dataclass, field
import uuid

from nodeflow.engine.errors import (
    CycleError,
    DuplicateNodeError,
    IncompatiblePortsError,
    MissingNodeError,
    StructuralError,
)
from nodeflow.engine.expressions import extract_dependencies
from nodeflow.engine.node import BaseNode


@dataclass
class Connection:
    """
    A directed link from one node's output to another node's input.

    Attributes:
        connection_id: Unique identifier within the workflow
        source_node_id: Node producing the data
        target_node_id: Node consuming the data
        branch_index: Only active when the source selected this branch
        guard: Condition over the source output (named "value")
        source_port: Field taken from the source output (whole output if None)
        target_port: Input name the value is delivered under
    """
    connection_id: str
    source_node_id: str
    target_node_id: str
    branch_index: Optional[int] = None
    guard: Optional[str] = None
    source_port: Optional[str] = None
    target_port: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.connection_id,
            "sourceNodeId": self.source_node_id,
            "targetNodeId": self.target_node_id,
        }
        optional = {
            "branchIndex": self.branch_index,
            "guard": self.guard,
            "sourcePort": self.source_port,
            "targetPort": self.target_port,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data


# DFS colours
_WHITE, _GRAY, _BLACK = 0, 1, 2


def find_cycle(adjacency: Dict[str, List[str]]) -> Optional[List[str]]:
    """
    Iterative three-colour depth-first search.

    Args:
        adjacency: node_id -> ids of the nodes it points to

    Returns:
        The nodes of the first cycle found (first node repeated at the
        end), or None if the graph is acyclic
    """
    color = {node_id: _WHITE for node_id in adjacency}
    for start in adjacency:
        if color[start] != _WHITE:
            continue
        path = [start]
        stack = [(start, iter(adjacency[start]))]
        color[start] = _GRAY
        while stack:
            node_id, children = stack[-1]
            child = next(children, None)
            if child is None:
                color[node_id] = _BLACK
                stack.pop()
                path.pop()
                continue
            state = color.get(child, _WHITE)
            if state == _GRAY:
                return path[path.index(child):] + [child]
            if state == _WHITE:
                color[child] = _GRAY
                path.append(child)
                stack.append((child, iter(adjacency.get(child, []))))
    return None


@dataclass
class Workflow:
    """
    A workflow graph consisting of nodes and connections.

    Attributes:
        workflow_id: Unique identifier for this workflow
        name: Human-readable name
        nodes: node_id -> node, in insertion order
        connections: connection_id -> connection, in insertion order
        description: What the workflow does
        metadata: Additional workflow metadata
    """

    workflow_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = "Unnamed Workflow"
    nodes: Dict[str, BaseNode] = field(default_factory=dict)
    connections: Dict[str, Connection] = field(default_factory=dict)
    description: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    # ------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------

    def add_node(self, node: BaseNode) -> "Workflow":
        """
        Add a node to the workflow.

        Raises:
            DuplicateNodeError: If a node with the same id exists

        Returns:
            Self for chaining
        """
        if node.node_id in self.nodes:
            raise DuplicateNodeError(f"Node '{node.node_id}' already exists in the workflow")
        self.nodes[node.node_id] = node
        return self

    def remove_node(self, node_id: str) -> BaseNode:
        """Remove a node and every connection touching it."""
        if node_id not in self.nodes:
            raise MissingNodeError(f"Node '{node_id}' not found in workflow")
        for connection_id in [
            c.connection_id for c in self.connections.values()
            if node_id in (c.source_node_id, c.target_node_id)
        ]:
            del self.connections[connection_id]
        return self.nodes.pop(node_id)

    def add_connection(self, connection: Connection, check_ports: bool = False) -> "Workflow":
        """
        Add a connection after validating it.

        Args:
            connection: The connection to add
            check_ports: Also verify the declared port types are compatible

        Raises:
            StructuralError: Duplicate connection id
            MissingNodeError: An endpoint does not exist
            IncompatiblePortsError: Port check requested and failed
            CycleError: The connection would create a cycle

        Returns:
            Self for chaining
        """
        if connection.connection_id in self.connections:
            raise StructuralError(f"Connection '{connection.connection_id}' already exists")
        if connection.source_node_id not in self.nodes:
            raise MissingNodeError(f"Source node '{connection.source_node_id}' not found in workflow")
        if connection.target_node_id not in self.nodes:
            raise MissingNodeError(f"Target node '{connection.target_node_id}' not found in workflow")

        if check_ports:
            self._check_ports(connection)

        if self.would_create_cycle(connection.source_node_id, connection.target_node_id):
            raise CycleError(
                f"Connection '{connection.connection_id}' "
                f"({connection.source_node_id} -> {connection.target_node_id}) would create a cycle"
            )

        self.connections[connection.connection_id] = connection
        return self

    def connect(
        self,
        source: str,
        target: str,
        connection_id: Optional[str] = None,
        **kwargs,
    ) -> Connection:
        """Create and add a connection, generating an id when none is given."""
        connection = Connection(
            connection_id=connection_id or f"{source}->{target}-{uuid.uuid4().hex[:8]}",
            source_node_id=source,
            target_node_id=target,
            **kwargs,
        )
        self.add_connection(connection)
        return connection

    def remove_connection(self, connection_id: str) -> Connection:
        if connection_id not in self.connections:
            raise StructuralError(f"Connection '{connection_id}' not found")
        return self.connections.pop(connection_id)

    def _check_ports(self, connection: Connection) -> None:
        source = self.nodes[connection.source_node_id]
        target = self.nodes[connection.target_node_id]
        if not connection.source_port or not connection.target_port:
            raise IncompatiblePortsError(
                f"Connection '{connection.connection_id}' must name both ports to be type-checked"
            )
        source_port = source.output_ports.get(connection.source_port)
        if source_port is None:
            raise IncompatiblePortsError(
                f"Node '{source.node_id}' has no output port '{connection.source_port}'"
            )
        if connection.target_port not in target.input_ports:
            raise IncompatiblePortsError(
                f"Node '{target.node_id}' has no input port '{connection.target_port}'"
            )
        if not target.is_input_compatible(connection.target_port, source_port):
            raise IncompatiblePortsError(
                f"Port '{source.node_id}.{connection.source_port}' ({source_port.port_type.value}) "
                f"is not compatible with '{target.node_id}.{connection.target_port}' "
                f"({target.input_ports[connection.target_port].port_type.value})"
            )

    # ------------------------------------------------------------
    # Structure queries
    # ------------------------------------------------------------

    def get_incoming(self, node_id: str) -> List[Connection]:
        return [c for c in self.connections.values() if c.target_node_id == node_id]

    def get_outgoing(self, node_id: str) -> List[Connection]:
        return [c for c in self.connections.values() if c.source_node_id == node_id]

    def get_upstream(self, node_id: str) -> Set[str]:
        """All nodes this node transitively depends on."""
        upstream: Set[str] = set()
        to_visit = [c.source_node_id for c in self.get_incoming(node_id)]
        while to_visit:
            current = to_visit.pop()
            if current in upstream:
                continue
            upstream.add(current)
            to_visit.extend(c.source_node_id for c in self.get_incoming(current))
        return upstream

    def _adjacency(self, extra: Iterable[tuple] = ()) -> Dict[str, List[str]]:
        adjacency: Dict[str, List[str]] = {node_id: [] for node_id in self.nodes}
        for connection in self.connections.values():
            adjacency.setdefault(connection.source_node_id, []).append(connection.target_node_id)
        for source, target in extra:
            adjacency.setdefault(source, []).append(target)
        return adjacency

    def would_create_cycle(self, source: str, target: str) -> bool:
        """Check whether adding source -> target would close a cycle."""
        if source == target:
            return True
        return find_cycle(self._adjacency([(source, target)])) is not None

    def get_execution_order(self) -> List[str]:
        """
        Topologically sort the nodes (Kahn's algorithm).

        Nodes whose dependencies are satisfied at the same time keep their
        insertion order.

        Raises:
            CycleError: If the graph contains a cycle
        """
        position = {node_id: index for index, node_id in enumerate(self.nodes)}
        in_degree = {node_id: 0 for node_id in self.nodes}
        for connection in self.connections.values():
            in_degree[connection.target_node_id] += 1

        adjacency = self._adjacency()
        order: List[str] = []
        ready = [node_id for node_id in self.nodes if in_degree[node_id] == 0]

        while ready:
            order.extend(ready)
            next_ready = []
            for node_id in ready:
                for target in adjacency[node_id]:
                    in_degree[target] -= 1
                    if in_degree[target] == 0:
                        next_ready.append(target)
            ready = sorted(next_ready, key=position.__getitem__)

        if len(order) < len(self.nodes):
            stuck = [node_id for node_id in self.nodes if node_id not in set(order)]
            raise CycleError(f"Workflow contains a cycle involving nodes: {stuck}")
        return order

    def validate(self) -> List[str]:
        """
        Validate the workflow structure.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.nodes:
            errors.append("Workflow must have at least one node")
            return errors

        cycle = find_cycle(self._adjacency())
        if cycle:
            errors.append(f"Cycle detected: {' -> '.join(cycle)}")

        for node_id, node in self.nodes.items():
            upstream = None
            for referenced in sorted(extract_dependencies(node.original_settings)):
                if referenced not in self.nodes:
                    errors.append(f"Node '{node_id}' references unknown node '{referenced}'")
                    continue
                if upstream is None:
                    upstream = self.get_upstream(node_id)
                if referenced not in upstream:
                    errors.append(
                        f"Node '{node_id}' references '{referenced}', which does not run before it"
                    )

        return errors

    # ------------------------------------------------------------
    # Presentation helpers
    # ------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Summarise the workflow as a dictionary."""
        return {
            "workflow_id": self.workflow_id,
            "name": self.name,
            "description": self.description,
            "nodes": {node_id: node.get_node_info() for node_id, node in self.nodes.items()},
            "connections": [c.to_dict() for c in self.connections.values()],
            "metadata": self.metadata,
        }

    def to_mermaid(self) -> str:
        """Generate a Mermaid diagram of the workflow."""
        lines = ["graph TD"]

        for node_id, node in self.nodes.items():
            lines.append(f'    {node_id}["{node.name} ({node.node_type})"]')

        for connection in self.connections.values():
            label = None
            if connection.branch_index is not None:
                label = f"branch {connection.branch_index}"
            elif connection.guard:
                label = connection.guard.replace('"', "'")
            if label:
                lines.append(f"    {connection.source_node_id} -->|{label}| {connection.target_node_id}")
            else:
                lines.append(f"    {connection.source_node_id} --> {connection.target_node_id}")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"Workflow(name='{self.name}', nodes={list(self.nodes.keys())}, "
            f"connections={len(self.connections)})"
        )

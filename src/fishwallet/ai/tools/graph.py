"""Dependency-graph tools: nodes are services/libraries, edges are integrations."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from ...services.storage import DependencyNode, GraphStore
from ..orchestration.types import RequestContext
from .base import FamilyExecutorBase, optional_str, require_str
from .errors import NotFoundError
from .registry import ParameterSchema, ToolCatalog, ToolFamily, ToolSchema

__all__ = ["GRAPH_TOOLS", "GraphToolExecutor", "graph_catalog", "describe_graph"]

LOGGER = logging.getLogger(__name__)

_PRICING = ParameterSchema(
    name="pricing",
    type="object",
    description="Pricing or licensing information",
    properties={
        "model": ParameterSchema("model", "string", "Pricing model, e.g. per-request, tiered, open-source"),
        "per_request": ParameterSchema("per_request", "string", "Cost per request"),
        "per_unit": ParameterSchema("per_unit", "string", "Cost per unit"),
        "free_quota": ParameterSchema("free_quota", "string", "Free tier or license, e.g. MIT License"),
        "notes": ParameterSchema("notes", "string", "Additional notes"),
    },
)
_COLOR = ParameterSchema("color", "string", "Node color as a hex code, e.g. #3b82f6")


def _graph(name: str, description: str, *params: ParameterSchema, mutates: bool = True) -> ToolSchema:
    return ToolSchema(name=name, description=description, parameters=params, family=ToolFamily.GRAPH, mutates=mutates)


GRAPH_TOOLS: tuple[ToolSchema, ...] = (
    _graph(
        "create_dependency_node",
        "Create a dependency node (an API, library, package or service the project needs). "
        "Include pricing or licensing information when known.",
        ParameterSchema("name", "string", "Display name, e.g. 'Stripe Payments'", required=True),
        ParameterSchema("provider", "string", "Provider or source, e.g. 'OpenAI', 'npm'", required=True),
        ParameterSchema("description", "string", "What the dependency does for the project", required=True),
        _PRICING,
        _COLOR,
    ),
    _graph(
        "update_dependency_node",
        "Update an existing dependency node.",
        ParameterSchema("node_id", "string", "ID of the node to update", required=True),
        ParameterSchema("name", "string", "New display name"),
        ParameterSchema("provider", "string", "New provider"),
        ParameterSchema("description", "string", "New description"),
        _PRICING,
        _COLOR,
    ),
    _graph(
        "delete_dependency_node",
        "Delete a dependency node and every connection to or from it.",
        ParameterSchema("node_id", "string", "ID of the node to delete", required=True),
    ),
    _graph(
        "connect_dependency_nodes",
        "Connect two nodes by name and describe what crosses the boundary between them.",
        ParameterSchema("from_node", "string", "Name of the source node", required=True),
        ParameterSchema("to_node", "string", "Name of the target node", required=True),
        ParameterSchema("label", "string", "Short relationship label, e.g. 'queries'"),
        ParameterSchema("integration_method", "string", "Mechanism, e.g. 'REST API call'", required=True),
        ParameterSchema("data_flow", "string", "What data travels across", required=True),
        ParameterSchema("protocol", "string", "Wire protocol, e.g. 'HTTPS/JSON'", required=True),
        ParameterSchema("sdk_libraries", "string", "Libraries that bridge the two"),
        ParameterSchema("technical_notes", "string", "Implementation guidance", required=True),
    ),
    _graph(
        "disconnect_dependency_nodes",
        "Remove the connection between two nodes, looked up by name.",
        ParameterSchema("from_node", "string", "Name of the source node", required=True),
        ParameterSchema("to_node", "string", "Name of the target node", required=True),
    ),
    _graph(
        "read_dependency_nodes",
        "Read every node with its pricing and its incoming and outgoing connections.",
        mutates=False,
    ),
)


def graph_catalog() -> ToolCatalog:
    return ToolCatalog(GRAPH_TOOLS)


def _pricing(arguments: Mapping[str, Any]) -> dict[str, Any] | None:
    raw = arguments.get("pricing")
    if not raw:
        return None
    pricing = {key: value for key, value in dict(raw).items() if value is not None}
    pricing.setdefault("model", "unknown")
    return pricing


class GraphToolExecutor(FamilyExecutorBase):
    """Runs graph tools against a :class:`GraphStore`."""

    family_name = ToolFamily.GRAPH.value

    def __init__(self, store: GraphStore) -> None:
        super().__init__()
        self._store = store
        self.register("create_dependency_node", self._create_node)
        self.register("update_dependency_node", self._update_node)
        self.register("delete_dependency_node", self._delete_node)
        self.register("connect_dependency_nodes", self._connect)
        self.register("disconnect_dependency_nodes", self._disconnect)
        self.register("read_dependency_nodes", self._read)

    def _create_node(self, arguments: Mapping[str, Any], context: RequestContext) -> dict[str, Any]:
        node = self._store.create_node(
            context.idea_id,
            name=require_str(arguments, "name"),
            provider=require_str(arguments, "provider"),
            description=require_str(arguments, "description"),
            pricing=_pricing(arguments),
            color=optional_str(arguments, "color"),
        )
        return {
            "message": f"Created dependency node: {node.name}",
            "node_id": node.id,
            "name": node.name,
            "provider": node.provider,
            "position": {"x": node.position_x, "y": node.position_y},
        }

    def _update_node(self, arguments: Mapping[str, Any], context: RequestContext) -> dict[str, Any]:
        node_id = require_str(arguments, "node_id")
        if self._store.get_node(node_id) is None:
            raise NotFoundError(message=f"Node {node_id} not found", suggestion="Use read_dependency_nodes to list node IDs")
        node = self._store.update_node(
            node_id,
            name=optional_str(arguments, "name"),
            provider=optional_str(arguments, "provider"),
            description=optional_str(arguments, "description"),
            pricing=_pricing(arguments),
            color=optional_str(arguments, "color"),
        )
        return {"message": f"Updated dependency node: {node.name}", "node_id": node.id, "name": node.name}

    def _delete_node(self, arguments: Mapping[str, Any], context: RequestContext) -> dict[str, Any]:
        node_id = require_str(arguments, "node_id")
        node = self._store.get_node(node_id)
        if node is None:
            raise NotFoundError(message=f"Node {node_id} not found")
        self._store.delete_node(node_id)
        return {"message": f"Deleted dependency node: {node.name}"}

    def _find(self, idea_id: str, name: str, role: str) -> DependencyNode:
        nodes = self._store.list_nodes(idea_id)
        wanted = name.casefold()
        for node in nodes:
            if node.name.casefold() == wanted:
                return node
        available = ", ".join(node.name for node in nodes) or "none"
        raise NotFoundError(message=f'{role} node "{name}" not found. Available nodes: {available}')

    def _connect(self, arguments: Mapping[str, Any], context: RequestContext) -> dict[str, Any]:
        source = self._find(context.idea_id, require_str(arguments, "from_node"), "Source")
        target = self._find(context.idea_id, require_str(arguments, "to_node"), "Target")
        label = optional_str(arguments, "label")
        details = {
            "integration_method": arguments.get("integration_method"),
            "data_flow": arguments.get("data_flow"),
            "protocol": arguments.get("protocol"),
            "sdk_libraries": arguments.get("sdk_libraries"),
            "technical_notes": arguments.get("technical_notes"),
        }
        connection = self._store.create_connection(
            context.idea_id,
            source.id,
            target.id,
            label=label,
            details={key: value for key, value in details.items() if value is not None},
        )
        suffix = f" ({label})" if label else ""
        return {
            "message": f"Connected {source.name} -> {target.name}{suffix} with integration details",
            "connection_id": connection.id,
            "from_node": source.name,
            "to_node": target.name,
            "label": connection.label,
            "integration_method": details["integration_method"],
            "protocol": details["protocol"],
        }

    def _disconnect(self, arguments: Mapping[str, Any], context: RequestContext) -> dict[str, Any]:
        source = self._find(context.idea_id, require_str(arguments, "from_node"), "Source")
        target = self._find(context.idea_id, require_str(arguments, "to_node"), "Target")
        removed = self._store.delete_connection_between(source.id, target.id)
        return {"message": f"Disconnected {source.name} from {target.name}", "removed": removed}

    def _read(self, arguments: Mapping[str, Any], context: RequestContext) -> dict[str, Any]:
        return describe_graph(self._store, context.idea_id)


def describe_graph(store: GraphStore, idea_id: str) -> dict[str, Any]:
    """Summarize the graph with per-node incoming and outgoing edges."""

    nodes = store.list_nodes(idea_id)
    connections = store.list_connections(idea_id)
    if not nodes:
        return {"message": "No dependency nodes created yet.", "node_count": 0, "connection_count": 0, "nodes": [], "connections": []}

    names = {node.id: node.name for node in nodes}
    outgoing: dict[str, list[dict[str, Any]]] = {node.id: [] for node in nodes}
    incoming: dict[str, list[dict[str, Any]]] = {node.id: [] for node in nodes}
    for conn in connections:
        outgoing.setdefault(conn.from_node_id, []).append(
            {"node_id": conn.to_node_id, "node_name": names.get(conn.to_node_id, "Unknown"), "description": conn.label or "connected to"}
        )
        incoming.setdefault(conn.to_node_id, []).append(
            {"node_id": conn.from_node_id, "node_name": names.get(conn.from_node_id, "Unknown"), "description": conn.label or "connected from"}
        )

    nodes_info = []
    summary_lines = []
    for node in nodes:
        info = node.to_dict()
        info["connects_to"] = outgoing.get(node.id, [])
        info["receives_from"] = incoming.get(node.id, [])
        nodes_info.append(info)
        parts = []
        if info["connects_to"]:
            parts.append("sends to: " + ", ".join(f"{c['description']} {c['node_name']}" for c in info["connects_to"]))
        if info["receives_from"]:
            parts.append("receives from: " + ", ".join(f"{c['node_name']} {c['description']}" for c in info["receives_from"]))
        edges = f" [{' | '.join(parts)}]" if parts else " [no connections]"
        summary_lines.append(f"- {node.name} ({node.provider}): {node.description}{edges}")

    return {
        "message": f"Found {len(nodes)} nodes and {len(connections)} connections",
        "summary": "\n".join(summary_lines),
        "node_count": len(nodes),
        "connection_count": len(connections),
        "nodes": nodes_info,
        "connections": [
            {
                "id": conn.id,
                "from": {"id": conn.from_node_id, "name": names.get(conn.from_node_id)},
                "to": {"id": conn.to_node_id, "name": names.get(conn.to_node_id)},
                "label": conn.label,
            }
            for conn in connections
        ],
    }

"""Graph views of resolved dependencies, for export."""

from __future__ import annotations

from typing import TYPE_CHECKING

import networkx as nx
from graphviz import Digraph

from .models import Target

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .models import ComponentBundle
    from .resolver import DependencyResolver

SHAPES: dict[str, str] = {
    "component": "doubleoctagon",
    "unit": "rectangle",
    "archive": "oval",
    "resource": "note",
}


def _label(node: object) -> str:
    return node.name if isinstance(node, Target) else str(node)


def graph_to_dot(graph: nx.DiGraph, comment: str | None = None) -> Digraph:
    """Render a dependency graph as a Graphviz Dot graph.

    Node shapes follow their `kind` attribute. Self edges (an archive always depends on itself) are not drawn.
    """
    dot = Digraph() if comment is None else Digraph(comment=comment)
    node_ids: dict[object, str] = {}
    for node, data in sorted(graph.nodes(data=True), key=lambda nd: str(nd[0])):
        kind = data.get("kind", "unit")
        node_id = f"{kind}{len(node_ids)}"
        node_ids[node] = node_id
        dot.node(node_id, label=_label(node), shape=SHAPES.get(kind, "oval"))
    for source, dep in sorted(graph.edges(), key=lambda edge: (str(edge[0]), str(edge[1]))):
        if source != dep:
            dot.edge(node_ids[source], node_ids[dep])
    return dot


def graph_to_obj(graph: nx.DiGraph) -> dict[str, list[str]]:
    """Convert a dependency graph to a JSON-serializable adjacency mapping."""
    return {
        str(node): sorted(str(dep) for dep in graph.successors(node))
        for node in sorted(graph.nodes(), key=str)
    }


def bundle_graph(bundle: ComponentBundle, resolver: DependencyResolver) -> nx.DiGraph:
    """Return the part of the resolver's graph a component bundle uses, plus its declared resources."""
    nodes: set[Target] = bundle.units | bundle.archives
    resources: list[tuple[Target | None, Target]] = [(bundle.unit, r) for r in bundle.resources]
    for applet in bundle.applets:
        nodes |= applet.units | applet.archives
        resources.extend((applet.unit, r) for r in applet.resources)

    full = resolver.to_graph()
    graph = nx.DiGraph(full.subgraph(node for node in nodes if node in full))
    for node in nodes:
        if node not in graph:
            # declared archives are not necessarily reachable through the extractor
            graph.add_node(node, kind="archive" if node in bundle.archives else "unit")
    for owner, resource in resources:
        graph.add_node(resource, kind="resource")
        if owner is not None:
            graph.add_edge(owner, resource, relation="resource")
    if bundle.unit is not None and bundle.unit in graph:
        graph.nodes[bundle.unit]["kind"] = "component"
    return graph


def bundle_to_dot(bundle: ComponentBundle, resolver: DependencyResolver) -> Digraph:
    """Render the dependencies packaged with a component as a Graphviz Dot graph."""
    return graph_to_dot(bundle_graph(bundle, resolver), comment=f"Dependencies for {bundle.class_name}")


def bundles_to_dot(bundles: Iterable[ComponentBundle], resolver: DependencyResolver) -> Digraph:
    """Render several component bundles in one Graphviz Dot graph."""
    bundles = list(bundles)
    if not bundles:
        return Digraph()
    graph = nx.compose_all([bundle_graph(bundle, resolver) for bundle in bundles])
    return graph_to_dot(graph, comment=f"Dependencies for {', '.join(b.class_name for b in bundles)}")

"""
Graph Definition for Workflow Engine.

StateGraph accumulates nodes, edges and conditional routing; compile()
validates the declaration and freezes it into a CompiledGraph that the
executor can run.
"""

from typing import Any, Callable, Dict, Hashable, List, Mapping, Optional, Sequence, Set, Tuple, Union
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
import asyncio
import logging

from stepgraph.engine.errors import (
    DuplicateNodeError,
    GraphValidationError,
    InvalidEdgeError,
    RoutingError,
    UnknownNodeError,
)
from stepgraph.engine.node import END, START, Node, StepFunction, create_node_from_function
from stepgraph.engine.state import StateSchema


logger = logging.getLogger(__name__)

Router = Callable[[Mapping[str, Any]], Hashable]
PathMap = Union[Mapping[Hashable, str], Sequence[str]]


class RouteMode(str, Enum):
    """How a conditional edge set turns a router label into a node name."""
    MAPPED = "mapped"    # label -> path_map[label]
    DIRECT = "direct"    # label is the destination node name


@dataclass(frozen=True)
class ConditionalEdge:
    """
    A conditional edge set that routes to one node based on the state.

    The router receives the current state and returns a label. In MAPPED
    mode the label is looked up in routes; in DIRECT mode the label is the
    destination itself, optionally restricted to a declared set.
    """
    source: str
    router: Router
    mode: RouteMode
    routes: Optional[Mapping[Hashable, str]] = None
    destinations: Optional[Tuple[str, ...]] = None

    @property
    def router_name(self) -> str:
        return getattr(self.router, "__name__", str(self.router))

    def possible_targets(self, node_names: Sequence[str]) -> List[str]:
        """Every node this edge set could route to."""
        if self.mode == RouteMode.MAPPED:
            return list(dict.fromkeys(self.routes.values()))
        if self.destinations is not None:
            return list(self.destinations)
        return list(node_names) + [END]

    def resolve(self, label: Any, node_names: Mapping[str, Any]) -> str:
        """Resolve a router label to a destination node name."""
        if self.mode == RouteMode.MAPPED:
            try:
                target = self.routes[label]
            except (KeyError, TypeError):
                raise RoutingError(
                    self.source,
                    label,
                    f"Router on node '{self.source}' returned unknown route '{label}'. "
                    f"Available routes: {list(self.routes.keys())}",
                ) from None
        else:
            target = label
            if self.destinations is not None and target not in self.destinations:
                raise RoutingError(
                    self.source,
                    label,
                    f"Router on node '{self.source}' returned '{label}', "
                    f"expected one of {list(self.destinations)}",
                )

        if target != END and (not isinstance(target, str) or target not in node_names):
            raise RoutingError(
                self.source,
                label,
                f"Router on node '{self.source}' resolved to '{target}', "
                f"which is not a registered node",
            )
        return target

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "router": self.router_name,
            "mode": self.mode.value,
            "routes": {str(k): v for k, v in self.routes.items()} if self.routes is not None else None,
            "destinations": list(self.destinations) if self.destinations is not None else None,
        }


class StateGraph:
    """
    Builder for a workflow graph.

    Usage:
        graph = StateGraph(PostState)
        graph.add_node("generate", generate)
        graph.add_node("evaluate", evaluate)
        graph.add_edge(START, "generate")
        graph.add_edge("generate", "evaluate")
        graph.add_conditional_edges("evaluate", route, {"approved": END, "retry": "generate"})
        app = graph.compile()
        final_state = await app.invoke({"topic": "AI"})
    """

    def __init__(
        self,
        schema: Union[StateSchema, Any],
        name: str = "Unnamed Workflow",
        description: str = ""
    ):
        self.schema = StateSchema.coerce(schema)
        self.name = name
        self.description = description
        self.nodes: Dict[str, Node] = {}
        self.edges: Dict[str, List[str]] = {}
        self.conditional_edges: Dict[str, List[ConditionalEdge]] = {}

    def add_node(
        self,
        name: Union[str, StepFunction],
        step: Optional[StepFunction] = None,
        description: str = ""
    ) -> "StateGraph":
        """
        Add a node to the graph.

        The name may be omitted, in which case it is taken from the @node
        decorator or the function name: add_node(step).

        Returns:
            Self for chaining
        """
        if step is None and callable(name):
            node = create_node_from_function(name, description=description)
        else:
            node = create_node_from_function(step, name, description)

        if node.name in self.nodes:
            raise DuplicateNodeError(node.name)

        self.nodes[node.name] = node
        return self

    def _check_known(self, name: str, role: str) -> None:
        if name in (START, END):
            return
        if name not in self.nodes:
            raise UnknownNodeError(name, role)

    def add_edge(self, source: str, target: str) -> "StateGraph":
        """
        Add an unconditional edge from source to target.

        Several edges may leave the same node: all targets run as parallel
        branches.

        Returns:
            Self for chaining
        """
        if source == END:
            raise InvalidEdgeError("END cannot have outgoing edges")
        if target == START:
            raise InvalidEdgeError("START cannot be the target of an edge")
        self._check_known(source, "source node")
        self._check_known(target, "target node")

        targets = self.edges.setdefault(source, [])
        if target not in targets:
            targets.append(target)
        return self

    def add_conditional_edges(
        self,
        source: str,
        router: Router,
        path_map: Optional[PathMap] = None
    ) -> "StateGraph":
        """
        Add a conditional edge set leaving source.

        Args:
            source: Source node name (or START)
            router: Function of the state returning a label
            path_map: dict of label -> node for explicit mapping; a list of
                node names for direct resolution restricted to those nodes;
                None for direct resolution against every node

        Returns:
            Self for chaining
        """
        if source == END:
            raise InvalidEdgeError("END cannot have outgoing edges")
        self._check_known(source, "source node")
        if not callable(router):
            raise InvalidEdgeError(f"Router for node '{source}' must be callable")

        if path_map is None:
            edge = ConditionalEdge(source=source, router=router, mode=RouteMode.DIRECT)
        elif isinstance(path_map, Mapping):
            for label, target in path_map.items():
                if target == START:
                    raise InvalidEdgeError(f"Route '{label}' cannot target START")
                self._check_known(target, f"target node for route '{label}'")
            edge = ConditionalEdge(
                source=source,
                router=router,
                mode=RouteMode.MAPPED,
                routes=MappingProxyType(dict(path_map)),
            )
        else:
            destinations = tuple(path_map)
            for target in destinations:
                if target == START:
                    raise InvalidEdgeError("A conditional edge cannot target START")
                self._check_known(target, "target node")
            edge = ConditionalEdge(
                source=source,
                router=router,
                mode=RouteMode.DIRECT,
                destinations=destinations,
            )

        self.conditional_edges.setdefault(source, []).append(edge)
        return self

    def set_entry_point(self, node_name: str) -> "StateGraph":
        """Shortcut for add_edge(START, node_name)."""
        return self.add_edge(START, node_name)

    def set_finish_point(self, node_name: str) -> "StateGraph":
        """Shortcut for add_edge(node_name, END)."""
        return self.add_edge(node_name, END)

    def _possible_targets(self, source: str) -> List[str]:
        targets = list(self.edges.get(source, []))
        for cond in self.conditional_edges.get(source, []):
            targets.extend(cond.possible_targets(list(self.nodes)))
        return list(dict.fromkeys(targets))

    def _back_edges(self) -> Set[Tuple[str, str]]:
        """
        Edges that close a cycle.

        Found by a depth-first walk from START following targets in
        declaration order: an edge into a node still on the current path is
        a back edge. Removing them leaves an acyclic graph.
        """
        back: Set[Tuple[str, str]] = set()
        on_path: Set[str] = {START}
        finished: Set[str] = set()
        stack = [(START, iter(self._possible_targets(START)))]

        while stack:
            source, targets = stack[-1]
            for target in targets:
                if target == END or target in finished:
                    continue
                if target in on_path:
                    back.add((source, target))
                    continue
                on_path.add(target)
                stack.append((target, iter(self._possible_targets(target))))
                break
            else:
                stack.pop()
                on_path.discard(source)
                finished.add(source)

        return back

    def _reachable_from(self, origin: str, skip: Set[Tuple[str, str]] = frozenset()) -> Set[str]:
        """Nodes reachable from origin through at least one edge, ignoring the skipped edges."""
        reachable: Set[str] = set()
        to_visit = [origin]

        while to_visit:
            source = to_visit.pop()
            for target in self._possible_targets(source):
                if target in reachable or (source, target) in skip:
                    continue
                reachable.add(target)
                if target != END:
                    to_visit.append(target)

        return reachable


    def validate(self) -> Tuple[List[str], List[str]]:
        """
        Validate the graph structure.

        Returns:
            (violations, warnings); the graph is valid when violations is empty
        """
        violations: List[str] = []
        warnings: List[str] = []

        if START not in self.edges and START not in self.conditional_edges:
            violations.append("START has no outgoing edge")

        for source in set(self.edges) | set(self.conditional_edges):
            conditional = self.conditional_edges.get(source, [])
            if source in self.edges and conditional:
                violations.append(
                    f"Node '{source}' has both unconditional and conditional outgoing edges"
                )
            if len(conditional) > 1:
                violations.append(f"Node '{source}' has {len(conditional)} conditional edge sets")
            for target in self._possible_targets(source):
                if target != END and target not in self.nodes:
                    violations.append(f"Edge {source} -> {target} references an unknown node")

        incoming: Set[str] = set()
        for source in set(self.edges) | set(self.conditional_edges):
            incoming.update(self._possible_targets(source))

        for name in self.nodes:
            if name not in self.edges and name not in self.conditional_edges:
                violations.append(f"Node '{name}' has no outgoing edge")
            if name not in incoming:
                violations.append(f"Node '{name}' has no incoming edge")

        reachable = self._reachable_from(START)
        orphans = sorted(set(self.nodes) - reachable)
        if orphans:
            violations.append(f"Nodes not reachable from START: {orphans}")
        if END not in reachable:
            violations.append("END is not reachable from START")

        for source, targets in self.edges.items():
            if END in targets and len(targets) > 1:
                others = [t for t in targets if t != END]
                warnings.append(
                    f"Node '{source}' exits to END and also continues to {others}; "
                    f"the branch to END ends there while the others keep running"
                )

        return violations, warnings

    def compile(self) -> "CompiledGraph":
        """
        Validate the declaration and return an executable graph.

        Raises:
            GraphValidationError: listing every violation found
        """
        violations, warnings = self.validate()
        if violations:
            raise GraphValidationError(violations)

        for warning in warnings:
            logger.warning(f"Graph '{self.name}': {warning}")

        back_edges = self._back_edges()
        sources = list(self.nodes) + [START]
        reachability = {name: frozenset(self._reachable_from(name)) for name in sources}
        precedence = {name: frozenset(self._reachable_from(name, back_edges)) for name in sources}

        return CompiledGraph(
            schema=self.schema,
            name=self.name,
            description=self.description,
            nodes=dict(self.nodes),
            edges={source: tuple(targets) for source, targets in self.edges.items()},
            conditional_edges={source: edges[0] for source, edges in self.conditional_edges.items()},
            reachability=reachability,
            precedence=precedence,
            back_edges=back_edges,
            warnings=warnings,
        )

    def __repr__(self) -> str:
        return f"StateGraph(name='{self.name}', nodes={list(self.nodes.keys())})"


class CompiledGraph:
    """
    An immutable, validated workflow graph.

    Created by StateGraph.compile(); later changes to the builder do not
    affect it.
    """

    def __init__(
        self,
        schema: StateSchema,
        name: str,
        description: str,
        nodes: Dict[str, Node],
        edges: Dict[str, Tuple[str, ...]],
        conditional_edges: Dict[str, ConditionalEdge],
        reachability: Dict[str, frozenset],
        precedence: Dict[str, frozenset],
        back_edges: Set[Tuple[str, str]],
        warnings: List[str],
    ):
        self.schema = schema
        self.name = name
        self.description = description
        self.nodes: Mapping[str, Node] = MappingProxyType(nodes)
        self.edges: Mapping[str, Tuple[str, ...]] = MappingProxyType(edges)
        self.conditional_edges: Mapping[str, ConditionalEdge] = MappingProxyType(conditional_edges)
        self.warnings: Tuple[str, ...] = tuple(warnings)
        self.back_edges: frozenset = frozenset(back_edges)
        self._reachability = MappingProxyType(reachability)
        self._precedence = MappingProxyType(precedence)
        self._order = {name: index for index, name in enumerate(nodes)}

    def reaches(self, source: str, target: str) -> bool:
        """Whether target can be reached from source through at least one edge."""
        return target in self._reachability.get(source, frozenset())

    def precedes(self, source: str, target: str) -> bool:
        """
        Whether target lies downstream of source within one pass of the graph.

        Like reaches(), but loop-closing back edges are not followed, so two
        nodes on a common cycle are still ordered.
        """
        return target in self._precedence.get(source, frozenset())

    def declaration_order(self, name: str) -> int:
        return self._order.get(name, -1)

    def next_nodes(self, source: str, state: Mapping[str, Any]) -> Tuple[List[str], Optional[Any]]:
        """
        Resolve the transitions leaving a node.

        Returns:
            (destinations, route label); the label is None for unconditional edges

        Raises:
            RoutingError: if a router's label does not resolve to a node
        """
        if source in self.conditional_edges:
            cond = self.conditional_edges[source]
            label = cond.router(state)
            target = cond.resolve(label, self.nodes)
            logger.debug(f"Conditional route from '{source}': {label} -> {target}")
            return [target], label

        return list(self.edges.get(source, ())), None

    async def invoke(self, initial_state: Optional[Mapping[str, Any]] = None, **options) -> Dict[str, Any]:
        """
        Run the graph to completion and return the final state.

        Keyword options are passed to the Executor (recursion_limit,
        step_timeout, timeout, parallel, on_step).
        """
        from stepgraph.engine.executor import Executor

        result = await Executor(self, **options).run(initial_state or {})
        return result.final_state

    def invoke_sync(self, initial_state: Optional[Mapping[str, Any]] = None, **options) -> Dict[str, Any]:
        """Blocking variant of invoke() for scripts without an event loop."""
        return asyncio.run(self.invoke(initial_state, **options))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the graph structure to a dictionary."""
        return {
            "name": self.name,
            "description": self.description,
            "state_fields": {
                name: self.schema.strategy(name).value for name in self.schema.field_names
            },
            "nodes": {name: node.to_dict() for name, node in self.nodes.items()},
            "edges": {source: list(targets) for source, targets in self.edges.items()},
            "conditional_edges": {
                source: edge.to_dict() for source, edge in self.conditional_edges.items()
            },
            "back_edges": sorted([source, target] for source, target in self.back_edges),
            "warnings": list(self.warnings),
        }

    def __repr__(self) -> str:
        return f"CompiledGraph(name='{self.name}', nodes={list(self.nodes.keys())})"

"""
Workflow Registry.

Keeps compiled workflows under a name so the HTTP service (or any other
host) can look them up and invoke them. Workflows are usually registered
by decorating a factory that returns a CompiledGraph.
"""

from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime
import logging

from stepgraph.engine.graph import CompiledGraph


logger = logging.getLogger(__name__)


@dataclass
class RegisteredWorkflow:
    """
    A registered workflow.

    Attributes:
        name: Unique identifier for the workflow
        graph: The compiled graph
        description: Human-readable description
        registered_at: When the workflow was added
    """
    name: str
    graph: CompiledGraph
    description: str = ""
    registered_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize workflow metadata and structure."""
        structure = self.graph.to_dict()
        return {
            "name": self.name,
            "description": self.description,
            "registered_at": self.registered_at.isoformat(),
            "state_fields": structure["state_fields"],
            "nodes": list(structure["nodes"].keys()),
            "edges": structure["edges"],
            "conditional_edges": structure["conditional_edges"],
            "warnings": structure["warnings"],
        }


class WorkflowRegistry:
    """
    Registry of compiled workflows.

    Usage:
        registry = WorkflowRegistry()

        @registry.register("refine_post", description="Iterative post writer")
        def build_refine_post() -> CompiledGraph:
            return create_refine_workflow(writer)

        workflow = registry.get("refine_post")
        final_state = await workflow.graph.invoke({"topic": "AI"})
    """

    def __init__(self):
        self._workflows: Dict[str, RegisteredWorkflow] = {}

    def register(self, name: Optional[str] = None, description: str = "") -> Callable:
        """
        Decorator that builds a workflow from a factory and registers it.

        The factory is called once, at decoration time, and returned
        unchanged.
        """
        def decorator(factory: Callable[[], CompiledGraph]) -> Callable[[], CompiledGraph]:
            self.add(
                factory(),
                name=name or factory.__name__,
                description=description or (factory.__doc__ or "").strip(),
            )
            return factory

        return decorator

    def add(self, graph: CompiledGraph, name: Optional[str] = None, description: str = "") -> RegisteredWorkflow:
        """
        Directly add a compiled graph (non-decorator version).

        Re-adding a name replaces the earlier workflow.
        """
        if not isinstance(graph, CompiledGraph):
            raise TypeError(f"Expected a CompiledGraph, got {type(graph).__name__}")
        workflow_name = name or graph.name
        workflow = RegisteredWorkflow(
            name=workflow_name,
            graph=graph,
            description=description or graph.description,
        )
        self._workflows[workflow_name] = workflow
        logger.debug(f"Registered workflow: {workflow_name}")
        return workflow

    def get(self, name: str) -> Optional[RegisteredWorkflow]:
        """Get a workflow by name."""
        return self._workflows.get(name)

    def remove(self, name: str) -> bool:
        """Remove a workflow from the registry."""
        if name in self._workflows:
            del self._workflows[name]
            return True
        return False

    def list_workflows(self) -> List[RegisteredWorkflow]:
        return list(self._workflows.values())

    def __contains__(self, name: str) -> bool:
        return name in self._workflows

    def __len__(self) -> int:
        return len(self._workflows)

    def __iter__(self):
        return iter(self._workflows.values())


# Global workflow registry instance
workflow_registry = WorkflowRegistry()

"""
Workflows package - Reusable workflow templates and the workflow registry.
"""

from stepgraph.workflows.capabilities import DraftWriter, Evaluation, Evaluator, Review, Summarizer
from stepgraph.workflows.chain import create_chain_workflow
from stepgraph.workflows.panel import PanelState, create_panel_workflow
from stepgraph.workflows.refine import RefineState, create_refine_workflow, review_route
from stepgraph.workflows.registry import RegisteredWorkflow, WorkflowRegistry, workflow_registry

__all__ = [
    "DraftWriter",
    "Evaluation",
    "Evaluator",
    "Review",
    "Summarizer",
    "create_chain_workflow",
    "PanelState",
    "create_panel_workflow",
    "RefineState",
    "create_refine_workflow",
    "review_route",
    "RegisteredWorkflow",
    "WorkflowRegistry",
    "workflow_registry",
]

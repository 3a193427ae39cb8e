"""
Tests for the workflow templates and the workflow registry.
"""

import pytest
import asyncio
from typing import Annotated, List

from pydantic import BaseModel

from stepgraph.engine.errors import StepExecutionError
from stepgraph.engine.executor import Executor
from stepgraph.engine.graph import CompiledGraph
from stepgraph.engine.node import END, START, node
from stepgraph.engine.state import MergeStrategy
from stepgraph.workflows import (
    DraftWriter,
    Evaluation,
    Review,
    WorkflowRegistry,
    create_chain_workflow,
    create_panel_workflow,
    create_refine_workflow,
    review_route,
)


class StubWriter:
    """Writer that approves the draft on a given evaluation round."""

    def __init__(self, approve_on: int = 0):
        self.approve_on = approve_on
        self.evaluations = 0

    def generate(self, topic, iteration):
        return f"{topic} v{iteration}"

    async def evaluate(self, draft):
        self.evaluations += 1
        if self.approve_on and self.evaluations >= self.approve_on:
            return Review(evaluation="approved", feedback="good")
        return {"evaluation": "needs_improvement", "feedback": f"more detail ({self.evaluations})"}

    async def optimize(self, draft, feedback, topic):
        await asyncio.sleep(0)
        return f"{draft}+"


# ============================================================
# Chain Tests
# ============================================================

class TestChainWorkflow:
    """Tests for the sequential chain template."""

    @pytest.mark.asyncio
    async def test_chain_runs_in_order(self):
        """Test that each step sees the previous step's output."""
        class TextState(BaseModel):
            text: str = ""
            steps: Annotated[List[str], MergeStrategy.ACCUMULATE] = []

        @node(name="outline")
        def outline(state):
            return {"text": "outline", "steps": ["outline"]}

        def expand(state):
            return {"text": state["text"] + " -> draft", "steps": ["expand"]}

        graph = create_chain_workflow(
            TextState,
            [outline, expand, ("polish", lambda s: {"text": s["text"].upper(), "steps": ["polish"]})],
            name="writer_chain",
        )

        assert list(graph.nodes) == ["outline", "expand", "polish"]
        assert graph.edges[START] == ("outline",)
        assert graph.edges["polish"] == (END,)

        final = await graph.invoke({})
        assert final["text"] == "OUTLINE -> DRAFT"
        assert final["steps"] == ["outline", "expand", "polish"]

    def test_empty_chain(self):
        """Test that a chain needs at least one step."""
        with pytest.raises(ValueError):
            create_chain_workflow({"x": int}, [])


# ============================================================
# Panel Tests
# ============================================================

class TestPanelWorkflow:
    """Tests for the parallel evaluation panel."""

    @pytest.mark.asyncio
    async def test_panel_aggregates_all_branches(self):
        """Test that the aggregate node sees every evaluator's review."""
        async def clarity(subject):
            await asyncio.sleep(0.02)
            return Evaluation(feedback="clear", score=8)

        def depth(subject):
            return {"feedback": "shallow", "score": 5}

        async def language(subject):
            return Evaluation(feedback="fluent", score=9.5)

        graph = create_panel_workflow({"clarity": clarity, "depth": depth, "language": language})
        result = await Executor(graph).run({"subject": "An essay"})
        final = result.final_state

        assert len(final["reviews"]) == 3
        assert sorted(final["scores"]) == [5.0, 8.0, 9.5]
        assert final["average_score"] == 7.5
        assert final["summary"] == "clarity: clear\ndepth: shallow\nlanguage: fluent"
        assert result.visits["aggregate"] == 1
        assert result.execution_log[-1].node == "aggregate"

    @pytest.mark.asyncio
    async def test_panel_custom_summary(self):
        """Test the injected summarizer receives reviews sorted by criterion."""
        received = []

        async def summarize(reviews):
            received.extend(r["criterion"] for r in reviews)
            return "overall fine"

        graph = create_panel_workflow(
            {"zeta": lambda s: {"feedback": "z", "score": 4}, "alpha": lambda s: {"feedback": "a", "score": 6}},
            summarize=summarize,
        )
        final = await graph.invoke({"subject": "x"})

        assert received == ["alpha", "zeta"]
        assert final["summary"] == "overall fine"
        assert final["average_score"] == 5.0

    @pytest.mark.asyncio
    async def test_panel_rejects_bad_score(self):
        """Test that an out-of-range score fails the evaluator's node."""
        graph = create_panel_workflow({"clarity": lambda s: {"feedback": "?", "score": 42}})

        with pytest.raises(StepExecutionError) as exc_info:
            await graph.invoke({"subject": "x"})

        assert exc_info.value.node == "clarity"

    def test_empty_panel(self):
        """Test that a panel needs at least one evaluator."""
        with pytest.raises(ValueError):
            create_panel_workflow({})


# ============================================================
# Refine Tests
# ============================================================

class TestRefineWorkflow:
    """Tests for the generate/evaluate/optimize loop."""

    def test_writer_protocol(self):
        """Test that the stub satisfies the DraftWriter protocol."""
        assert isinstance(StubWriter(), DraftWriter)

    def test_review_route(self):
        """Test the routing condition."""
        assert review_route({"evaluation": "approved", "iteration": 1, "max_iteration": 5}) == "approved"
        assert review_route({"evaluation": "needs_improvement", "iteration": 6, "max_iteration": 5}) == "approved"
        assert review_route({"evaluation": "needs_improvement", "iteration": 2, "max_iteration": 5}) == "needs_improvement"

    @pytest.mark.asyncio
    async def test_refine_until_approved(self):
        """Test that the loop stops as soon as the draft is approved."""
        writer = StubWriter(approve_on=3)
        result = await Executor(create_refine_workflow(writer)).run({"topic": "AI"})
        final = result.final_state

        assert final["evaluation"] == "approved"
        assert final["iteration"] == 3
        assert final["draft"] == "AI v1++"
        assert final["draft_history"] == ["AI v1", "AI v1+", "AI v1++"]
        assert final["feedback_history"] == ["more detail (1)", "more detail (2)", "good"]
        assert result.visits == {"generate": 1, "evaluate": 3, "optimize": 2}
        assert [s.route_taken for s in result.execution_log if s.node == "evaluate"] == [
            "needs_improvement", "needs_improvement", "approved",
        ]

    @pytest.mark.asyncio
    async def test_refine_stops_at_max_iteration(self):
        """Test that the iteration budget ends a loop that is never approved."""
        writer = StubWriter()
        result = await Executor(create_refine_workflow(writer)).run({"topic": "AI", "max_iteration": 2})

        assert result.final_state["iteration"] == 3
        assert result.visits["optimize"] == 2
        assert result.visits["evaluate"] == 3
        assert len(result.final_state["draft_history"]) == 3


# ============================================================
# Registry Tests
# ============================================================

def build_simple_graph(name: str = "simple") -> CompiledGraph:
    return create_chain_workflow({"x": int}, [("inc", lambda s: {"x": s["x"] + 1})], name=name)


class TestWorkflowRegistry:
    """Tests for WorkflowRegistry."""

    def test_register_decorator(self):
        """Test registering a workflow through a factory."""
        registry = WorkflowRegistry()

        @registry.register("counter", description="Adds one")
        def build_counter():
            return build_simple_graph()

        assert "counter" in registry
        assert len(registry) == 1
        workflow = registry.get("counter")
        assert workflow.description == "Adds one"
        assert workflow.to_dict()["nodes"] == ["inc"]
        assert callable(build_counter)

    def test_add_and_remove(self):
        """Test direct registration and removal."""
        registry = WorkflowRegistry()
        registry.add(build_simple_graph("one"))
        registry.add(build_simple_graph("two"), name="second")

        assert [w.name for w in registry.list_workflows()] == ["one", "second"]
        assert registry.remove("one") is True
        assert registry.remove("one") is False
        assert registry.get("one") is None

    def test_add_rejects_uncompiled(self):
        """Test that only compiled graphs can be registered."""
        with pytest.raises(TypeError):
            WorkflowRegistry().add(object())

    @pytest.mark.asyncio
    async def test_invoke_registered(self):
        """Test running a workflow looked up from the registry."""
        registry = WorkflowRegistry()
        registry.add(build_simple_graph())

        final = await registry.get("simple").graph.invoke({"x": 41})
        assert final["x"] == 42


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

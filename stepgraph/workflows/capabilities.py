"""
Capabilities injected into workflow templates.

Workflow templates never build an LLM client themselves. The caller passes
an object implementing the protocol the template needs, which keeps the
templates testable with stubs. Methods may be plain or async.
"""

from typing import Any, Awaitable, List, Literal, Mapping, Protocol, Union, runtime_checkable
import inspect

from pydantic import BaseModel, Field


class Evaluation(BaseModel):
    """Structured verdict of one evaluator: feedback text and a 0-10 score."""
    feedback: str = Field(..., description="Detailed feedback")
    score: float = Field(..., ge=0, le=10, description="Score out of 10")


class Review(BaseModel):
    """Structured verdict on a draft in a refine loop."""
    evaluation: Literal["approved", "needs_improvement"]
    feedback: str = ""


@runtime_checkable
class DraftWriter(Protocol):
    """Writes, judges and rewrites drafts for the refine loop."""

    def generate(self, topic: str, iteration: int) -> Union[str, Awaitable[str]]:
        ...

    def evaluate(self, draft: str) -> Union[Review, Mapping[str, Any], Awaitable[Any]]:
        ...

    def optimize(self, draft: str, feedback: str, topic: str) -> Union[str, Awaitable[str]]:
        ...


@runtime_checkable
class Evaluator(Protocol):
    """Judges a subject along one criterion."""

    def __call__(self, subject: str) -> Union[Evaluation, Mapping[str, Any], Awaitable[Any]]:
        ...


@runtime_checkable
class Summarizer(Protocol):
    """Condenses the panel's reviews into a short summary."""

    def __call__(self, reviews: List[Mapping[str, Any]]) -> Union[str, Awaitable[str]]:
        ...


async def call_capability(result: Any) -> Any:
    """Await the result of a capability call if it is awaitable."""
    if inspect.isawaitable(result):
        return await result
    return result

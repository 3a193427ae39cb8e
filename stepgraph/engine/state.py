"""
State Management for Workflow Engine.

This module provides the state schema, the per-field merge strategies and the
mutable state record that flows through a workflow run.

A schema is declared once, as a pydantic model:

    class PostState(BaseModel):
        topic: str
        draft: str = ""
        iteration: int = 0
        draft_history: Annotated[List[str], MergeStrategy.ACCUMULATE] = []

Fields without a strategy marker are overwritten by step updates,
ACCUMULATE fields get each update appended in arrival order.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Type, Union, get_origin
from dataclasses import dataclass
from datetime import datetime
from copy import deepcopy
from enum import Enum
from types import MappingProxyType
import uuid

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, create_model

from stepgraph.engine.errors import StateValidationError


class MergeStrategy(str, Enum):
    """How a step's value for a field combines with the current value."""
    OVERWRITE = "overwrite"
    ACCUMULATE = "accumulate"


def _type_default(annotation: Any) -> Any:
    """Type-appropriate default for a field declared without one."""
    origin = get_origin(annotation) or annotation
    if not isinstance(origin, type) or issubclass(origin, Enum):
        return None
    for kind in (bool, str, int, float, list, tuple, dict, set, frozenset):
        if issubclass(origin, kind):
            return kind()
    return None


def _is_sequence_type(annotation: Any) -> bool:
    origin = get_origin(annotation) or annotation
    return isinstance(origin, type) and issubclass(origin, (list, tuple))


@dataclass(frozen=True)
class FieldSpec:
    """A single field of a state schema."""
    name: str
    annotation: Any
    strategy: MergeStrategy
    adapter: TypeAdapter
    required: bool
    default: Any = None

    def make_default(self) -> Any:
        return deepcopy(self.default)


class StateSchema:
    """
    The fixed set of fields a workflow state may hold.

    Built from a pydantic model, or from a plain mapping of field name to
    annotation (converted to a model internally). The field set never
    changes after construction.

    Usage:
        schema = StateSchema(PostState)
        schema = StateSchema({"x": int, "history": Annotated[List[int], MergeStrategy.ACCUMULATE]})
    """

    def __init__(self, model: Union[Type[BaseModel], Mapping[str, Any]], name: Optional[str] = None):
        if isinstance(model, Mapping):
            definitions = {key: (annotation, ...) for key, annotation in model.items()}
            model = create_model(name or "WorkflowStateModel", **definitions)
        if not (isinstance(model, type) and issubclass(model, BaseModel)):
            raise TypeError("State schema must be a pydantic model or a mapping of field annotations")

        self.model = model
        self.name = name or model.__name__
        self._fields: Dict[str, FieldSpec] = {}

        for field_name, info in model.model_fields.items():
            strategy = next(
                (m for m in info.metadata if isinstance(m, MergeStrategy)),
                MergeStrategy.OVERWRITE,
            )
            if strategy == MergeStrategy.ACCUMULATE and not _is_sequence_type(info.annotation):
                raise StateValidationError(
                    f"Field '{field_name}' uses ACCUMULATE but is not a list or tuple type",
                    field=field_name,
                )
            required = info.is_required()
            default = _type_default(info.annotation) if required else info.get_default(call_default_factory=True)
            self._fields[field_name] = FieldSpec(
                name=field_name,
                annotation=info.annotation,
                strategy=strategy,
                adapter=TypeAdapter(info.annotation),
                required=required,
                default=default,
            )

    @classmethod
    def coerce(cls, schema: Union["StateSchema", Type[BaseModel], Mapping[str, Any]]) -> "StateSchema":
        """Accept a schema, a pydantic model or a field mapping."""
        if isinstance(schema, StateSchema):
            return schema
        return cls(schema)

    @property
    def field_names(self) -> List[str]:
        return list(self._fields)

    def __contains__(self, name: object) -> bool:
        return name in self._fields

    def field(self, name: str) -> FieldSpec:
        spec = self._fields.get(name)
        if spec is None:
            raise StateValidationError(
                f"Unknown state field '{name}' for schema '{self.name}'. "
                f"Known fields: {self.field_names}",
                field=name,
            )
        return spec

    def strategy(self, name: str) -> MergeStrategy:
        return self.field(name).strategy

    def defaults(self) -> Dict[str, Any]:
        """Default values for every field."""
        return {name: spec.make_default() for name, spec in self._fields.items()}

    def validate_value(self, name: str, value: Any) -> Any:
        """Validate a value for a field, returning the coerced value."""
        spec = self.field(name)
        try:
            return spec.adapter.validate_python(value)
        except ValidationError as e:
            raise StateValidationError(
                f"Invalid value for state field '{name}': {e}", field=name
            ) from e

    def merge_value(self, name: str, current: Any, update: Any) -> Any:
        """Combine an update with the current value of a field."""
        spec = self.field(name)
        if spec.strategy == MergeStrategy.OVERWRITE:
            return self.validate_value(name, update)

        if isinstance(update, (str, bytes)) or not isinstance(update, Sequence):
            raise StateValidationError(
                f"Field '{name}' accumulates sequences, got {type(update).__name__}",
                field=name,
            )
        merged = list(current or ()) + list(update)
        return self.validate_value(name, merged)

    def __repr__(self) -> str:
        return f"StateSchema(name='{self.name}', fields={self.field_names})"


class WorkflowState:
    """
    The shared state record of one workflow run.

    Owned by exactly one run. Steps never touch it directly: they read a
    detached, read-only view and return partial updates which are applied
    here through each field's merge strategy.
    """

    def __init__(self, schema: StateSchema, initial_data: Optional[Mapping[str, Any]] = None):
        self.schema = schema
        self._data: Dict[str, Any] = schema.defaults()
        for key, value in (initial_data or {}).items():
            self._data[key] = schema.validate_value(key, value)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value from the state data."""
        return self._data.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def view(self) -> Mapping[str, Any]:
        """A read-only copy of the current data, safe to hand to a step."""
        return MappingProxyType(deepcopy(self._data))

    def apply(self, update: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Apply a partial update in place.

        All fields are validated before any of them is written, so a bad
        update leaves the state untouched.

        Returns:
            The values that were written, keyed by field name
        """
        staged = {
            key: self.schema.merge_value(key, self._data.get(key), value)
            for key, value in update.items()
        }
        self._data.update(staged)
        return staged

    def snapshot(self) -> Dict[str, Any]:
        """A deep copy of the state data as a plain dict."""
        return deepcopy(self._data)

    def __repr__(self) -> str:
        return f"WorkflowState(schema='{self.schema.name}', data={self._data!r})"


class StateSnapshot(BaseModel):
    """A snapshot of state at a specific point in execution."""

    timestamp: datetime = Field(default_factory=datetime.now)
    node_name: str
    superstep: int = 0
    update: Dict[str, Any] = Field(default_factory=dict)
    state_data: Dict[str, Any]


class StateManager:
    """
    Manages state history and snapshots for a workflow run.

    This provides debugging capabilities by tracking state changes
    throughout the workflow execution.
    """

    def __init__(self, schema: StateSchema, run_id: Optional[str] = None):
        self.schema = schema
        self.run_id = run_id or str(uuid.uuid4())
        self.history: List[StateSnapshot] = []
        self.started_at: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None
        self._current_state: Optional[WorkflowState] = None

    @property
    def current_state(self) -> Optional[WorkflowState]:
        """Get the current state."""
        return self._current_state

    def initialize(self, initial_data: Mapping[str, Any]) -> WorkflowState:
        """Materialize the state from the caller's partial record and defaults."""
        self._current_state = WorkflowState(self.schema, initial_data)
        self.started_at = datetime.now()
        return self._current_state

    def apply(self, node_name: str, update: Mapping[str, Any], superstep: int = 0) -> Dict[str, Any]:
        """Merge a step's update into the current state and record a snapshot."""
        written = self._current_state.apply(update)
        self.history.append(StateSnapshot(
            node_name=node_name,
            superstep=superstep,
            update=deepcopy(written),
            state_data=self._current_state.snapshot(),
        ))
        return written

    def finalize(self) -> Dict[str, Any]:
        """Mark the workflow as complete and return the final snapshot."""
        self.completed_at = datetime.now()
        return self._current_state.snapshot()

    def get_history(self) -> List[Dict[str, Any]]:
        """Get the state history as a list of dictionaries."""
        return [
            {
                "timestamp": s.timestamp.isoformat(),
                "node": s.node_name,
                "superstep": s.superstep,
                "update": s.update,
                "state": s.state_data,
            }
            for s in self.history
        ]

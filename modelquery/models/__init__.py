"""Model metadata, hydrated records, relations and the model registry."""

from .model import DEFAULT_COLUMNS, Model
from .record import Record, to_plain
from .registry import ModelRegistry, get_model_registry, reset_model_registry
from .relation import Relation, build_relation

__all__ = [
    "DEFAULT_COLUMNS",
    "Model",
    "Record",
    "to_plain",
    "ModelRegistry",
    "get_model_registry",
    "reset_model_registry",
    "Relation",
    "build_relation",
]

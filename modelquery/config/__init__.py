"""Configuration for modelquery."""

from .schemas import ModelDefinition, QuerySettings, RelationDefinition
from .settings import get_settings

__all__ = ["ModelDefinition", "QuerySettings", "RelationDefinition", "get_settings"]

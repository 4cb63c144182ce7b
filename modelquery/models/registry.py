"""
Model Registry for modelquery.

Registry of models by name. Models are registered at startup and read
during query execution; resolution uses it to decide whether a payload
property names a model, and related-record loading uses it to resolve
relations.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable

from modelquery.config.schemas import ModelDefinition
from modelquery.errors import InvalidRequest, ModelNotFoundError

from .model import Model
from .relation import Relation, build_relation

logger = logging.getLogger(__name__)


class ModelRegistry:
    """
    Registry for models.

    Example:
        registry = get_model_registry()
        registry.register(Model(name="user", columns=[...]))

        model = registry.get("user")
        relation = registry.relation("user", "post")
    """

    def __init__(self, default_concurrency: int = 5) -> None:
        self._models: dict[str, Model] = {}
        self._relations: dict[tuple[str, str], Relation] = {}
        self.default_concurrency = default_concurrency

    def register(self, model: Model) -> Model:
        """
        Register a model.

        Note:
            A model with the same name is replaced (useful for testing).
        """
        if model.name in self._models:
            logger.warning(f"Replacing existing model: {model.name}")
        self._models[model.name] = model
        self._relations.clear()
        logger.info(f"Registered model: {model.name}")
        return model

    def load_definitions(
        self, definitions: Iterable[ModelDefinition | dict[str, Any]]
    ) -> list[Model]:
        """Build and register models from declarative definitions."""
        return [
            self.register(Model.from_definition(d, self.default_concurrency))
            for d in definitions
        ]

    def get(self, name: str) -> Model:
        """
        Get a model by name.

        Raises:
            ModelNotFoundError: If no model is registered under name
        """
        model = self._models.get(name)
        if model is None:
            available = ", ".join(self._models.keys()) or "(none)"
            raise ModelNotFoundError(
                f"No model registered: {name}. Available: {available}"
            )
        return model

    def has(self, name: str) -> bool:
        """Check if a model is registered."""
        return name in self._models

    @property
    def registered_models(self) -> list[str]:
        return list(self._models.keys())

    def relation(self, model_name: str, related_name: str) -> Relation:
        """
        Resolve the relation from one model to another.

        Uses the relation declared on `model_name`, or else the reverse of
        the one declared on `related_name`.

        Raises:
            ModelNotFoundError: If either model (or the link model) is unknown
            InvalidRequest: If neither side declares the relation
        """
        key = (model_name, related_name)
        cached = self._relations.get(key)
        if cached is not None:
            return cached

        model = self.get(model_name)
        related = self.get(related_name)

        if related_name in model.relations:
            definition = model.relations[related_name]
            via_model = self.get(definition.via) if definition.via else None
            relation = build_relation(model, related, definition, via_model)
        elif model_name in related.relations:
            definition = related.relations[model_name]
            via_model = self.get(definition.via) if definition.via else None
            relation = build_relation(related, model, definition, via_model).reverse()
        else:
            raise InvalidRequest(f"no relation for {related_name}", model=model_name)

        self._relations[key] = relation
        logger.debug(f"[registry] Resolved relation {model_name} -> {related_name}: {relation}")
        return relation

    def unregister(self, name: str) -> bool:
        if name in self._models:
            del self._models[name]
            self._relations.clear()
            logger.info(f"Unregistered model: {name}")
            return True
        return False

    def clear(self) -> None:
        """Clear all registered models (for testing)."""
        self._models.clear()
        self._relations.clear()
        logger.debug("Cleared all models")


# Global registry instance
_registry: ModelRegistry | None = None


def get_model_registry() -> ModelRegistry:
    """
    Get the global model registry.

    Creates the registry on first access (lazy initialization).
    """
    global _registry
    if _registry is None:
        _registry = ModelRegistry()
    return _registry


def reset_model_registry() -> None:
    """
    Reset the global model registry (for testing).

    Creates a fresh registry instance.
    """
    global _registry
    if _registry is not None:
        _registry.clear()
    _registry = None

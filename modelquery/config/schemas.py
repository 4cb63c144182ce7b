"""
Configuration Schemas for modelquery.

Pydantic models for engine settings and declarative model definitions.
Model definitions are plain data (loadable from JSON/YAML or a settings
store) and are turned into Model instances by the registry.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class QuerySettings(BaseModel):
    """
    Engine settings.

    Loaded from MODELQUERY_* environment variables by get_settings().
    """

    # Service identity
    service_name: str = "modelquery"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Fan-out and pagination
    concurrency: int = Field(5, ge=1, description="Default per-model concurrency limit")
    page_size: int = Field(25, ge=1, description="Default ResultCursor page size")

    # Cache
    cache_enabled: bool = Field(True, description="Attach a MemoryCache to the default engine")
    cache_ttl_seconds: int = Field(300, ge=1)
    cache_maxsize: int = Field(10000, ge=1, description="Maximum number of cached entries")


class RelationDefinition(BaseModel):
    """
    Relation from one model to another.

    A relation is either direct (the related model carries a column pointing
    at this model, or this model carries one pointing at the related model)
    or mediated by a link model named in `via`.
    """

    via: str | None = Field(None, description="Link model joining the two models")
    model_id_column: str | None = Field(None, description="Column on this model's rows supplying the key")
    relation_id_column: str | None = Field(None, description="Column on the related model's rows")
    via_model_id_column: str | None = Field(None, description="Column on the link model pointing at this model")
    via_relation_id_column: str | None = Field(None, description="Column on the link model pointing at the related model")

    class Config:
        extra = "forbid"


class ModelDefinition(BaseModel):
    """
    Declarative model definition.

    Standard columns are switched on/off with flags; `columns` adds extra
    scalar columns (e.g. foreign keys like `ownerId`).
    """

    name: str = Field(..., description="Unique model name")
    columns: list[str] = Field(default_factory=list, description="Extra columns")
    id_column: bool = True
    original_id: bool = True
    account_id: bool = True
    data_column: bool = True
    soft_delete: bool = True
    access_id_name: str | None = Field(None, description="Column used for `own` access scope")
    concurrency: int | None = Field(None, ge=1)
    cache: bool = True
    compression: bool = False
    action_states: dict[str, str] | None = Field(
        None, description="Filter property -> access-control state name"
    )
    views: dict[str, Any] = Field(default_factory=dict, description="Named views and `default`")
    relations: dict[str, RelationDefinition] = Field(default_factory=dict)

    class Config:
        extra = "forbid"

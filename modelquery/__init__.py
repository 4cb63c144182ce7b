"""
modelquery - query execution and result materialization for model-backed stores.

modelquery turns declarative query arguments into store statements and
shapes the rows that come back:

- **Access control**: every query is scoped by a pluggable role policy
- **Revisions**: select current revisions by original id
- **Relations**: load related records with `with`, direct or through a link model
- **Resolution**: replace id references in payloads with hydrated records
- **Cursors**: page through id-only results in order
- **Views**: per-record and per-collection post-processing, cacheable

Quick Start:
    >>> from modelquery import ModelRegistry, QueryEngine
    >>> from modelquery.store import MemoryStore
    >>>
    >>> registry = ModelRegistry()
    >>> registry.load_definitions([{"name": "post", "columns": ["userId"]}])
    >>> engine = QueryEngine(registry, MemoryStore())
    >>> posts = await engine.query("post", {"where": {"userId": user_id}, "all": True})
"""

__version__ = "0.1.0"

from modelquery.errors import (
    AccessDenied,
    InvalidRequest,
    InvalidResolveTarget,
    InvalidViewConfig,
    ModelNotFoundError,
    ModelQueryError,
    NotFound,
    QueryError,
)
from modelquery.models import Model, ModelRegistry, Record
from modelquery.query import Query, QueryEngine, ResultCursor
from modelquery.session import Session

__all__ = [
    "__version__",
    # Engine
    "Query",
    "QueryEngine",
    "ResultCursor",
    "Session",
    # Models
    "Model",
    "ModelRegistry",
    "Record",
    # Errors
    "ModelQueryError",
    "InvalidRequest",
    "ModelNotFoundError",
    "AccessDenied",
    "QueryError",
    "InvalidResolveTarget",
    "InvalidViewConfig",
    "NotFound",
]

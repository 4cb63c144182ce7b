"""
Query execution: request normalization, access control, statements,
reference resolution, cursors and views.
"""

from .access import (
    SCOPE_ALL,
    SCOPE_OWN,
    AccessDecision,
    AccessPolicy,
    AccessRule,
    AllowAllPolicy,
    RoleAccessPolicy,
    resolve_access,
)
from .cursor import ResultCursor
from .executor import Query, QueryEngine
from .request import QueryRequest, ResolveOverride
from .resolve import ReferenceResolver, ResolutionContext, ResolutionTarget, is_id
from .statement import SelectBuilder, Statement, StatementBuilder
from .views import (
    COLLECTION,
    RECORD,
    FunctionView,
    ModelView,
    ViewEngine,
    ViewRegistry,
    get_view_registry,
    reset_view_registry,
)

__all__ = [
    # Engine
    "Query",
    "QueryEngine",
    "QueryRequest",
    "ResolveOverride",
    # Access control
    "SCOPE_ALL",
    "SCOPE_OWN",
    "AccessDecision",
    "AccessPolicy",
    "AccessRule",
    "AllowAllPolicy",
    "RoleAccessPolicy",
    "resolve_access",
    # Statements
    "SelectBuilder",
    "Statement",
    "StatementBuilder",
    # Results
    "ResultCursor",
    "ReferenceResolver",
    "ResolutionContext",
    "ResolutionTarget",
    "is_id",
    # Views
    "RECORD",
    "COLLECTION",
    "ModelView",
    "FunctionView",
    "ViewEngine",
    "ViewRegistry",
    "get_view_registry",
    "reset_view_registry",
]

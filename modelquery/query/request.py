"""
Query request normalization.

Callers pass plain mappings (`{"where": {...}, "limit": 10, ...}`); these
are validated and normalized exactly once into a frozen QueryRequest before
any I/O happens. Every later stage reads the normalized form.
"""
from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from modelquery.errors import InvalidRequest

if TYPE_CHECKING:
    from modelquery.models import Model

# Comparison operators accepted in predicate objects
OPERATORS = frozenset({"eq", "in", "gt", "gte", "lt", "lte", "like", "between"})

# Arguments only the engine itself may set
RESERVED_ARGS = ("accessId", "accessIdName", "accessModel")


class ResolveOverride(BaseModel):
    """Per-property resolution overrides."""

    model_config = ConfigDict(
        populate_by_name=True, extra="forbid", frozen=True, protected_namespaces=()
    )

    model_name: str | None = Field(None, alias="modelName")
    model_property: str | None = Field(None, alias="modelProperty")
    set_property: str | None = Field(None, alias="setProperty")
    is_original_id: bool | None = Field(None, alias="isOriginalId")
    query_args: dict[str, Any] | None = Field(None, alias="queryArgs")


class QueryRequest(BaseModel):
    """
    Normalized query request.

    Build with QueryRequest.from_args(); constructing directly skips the
    normalization rules.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    where: dict[str, Any] = Field(default_factory=dict)
    limit: int | None = Field(None, ge=0)
    offset: int | None = Field(None, ge=0)
    order: Union[str, list[Any], None] = None
    all: bool = False
    one: bool = False
    with_: dict[str, Any] | None = Field(None, alias="with")
    resolve: Union[bool, dict[str, Union[bool, ResolveOverride]]] = False
    view: Union[bool, str, list[str], None] = None
    raw: bool = False
    plain: bool = False
    required: bool = False
    allow: bool = False
    cache: bool | None = None
    current: bool = False

    @field_validator("view")
    @classmethod
    def _view_true_not_allowed(cls, value: Any) -> Any:
        if value is True:
            raise ValueError("view must be false, a view name or a list of view names")
        return value

    @classmethod
    def from_args(
        cls,
        args: Mapping[str, Any] | None = None,
        model: Model | None = None,
    ) -> "QueryRequest":
        """
        Validate and normalize raw query arguments.

        Raises:
            InvalidRequest: For reserved or unknown fields, bad predicates,
                or conflicting `one`/`limit`/`all`
        """
        model_name = model.name if model is not None else None
        if isinstance(args, QueryRequest):
            return args
        if args is not None and not isinstance(args, Mapping):
            raise InvalidRequest("query args must be an object", model=model_name)
        args = copy.deepcopy(dict(args or {}))

        for key in RESERVED_ARGS:
            if key in args:
                raise InvalidRequest(f"{key} not allowed for query", model=model_name)
        if "select" in args:
            raise InvalidRequest("select is no longer supported", model=model_name)

        where = args.get("where")
        if where is None:
            where = {}
        if not isinstance(where, dict):
            raise InvalidRequest("where must be an object", model=model_name)
        where = {name: normalize_predicate(name, value, model_name) for name, value in where.items()}
        if model is not None and model.soft_delete and "isDeleted" not in where:
            where["isDeleted"] = False
        args["where"] = where

        if args.get("one"):
            if args.get("all"):
                raise InvalidRequest("one and all cannot be combined", model=model_name)
            if args.get("limit") not in (None, 1):
                raise InvalidRequest("one cannot be combined with a limit other than 1", model=model_name)
            args["limit"] = 1

        try:
            return cls.model_validate(args)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'args'}: {err['msg']}"
                for err in e.errors()
            )
            raise InvalidRequest(f"invalid query args: {problems}", model=model_name) from e

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def with_relations(self) -> dict[str, Any]:
        return self.with_ or {}

    @property
    def wants_related(self) -> bool:
        return bool(self.with_) or bool(self.resolve)

    def caching_allowed(self) -> bool:
        return self.cache is not False

    def id_filter(self, model: Model) -> Any:
        """Value the filter applies to the identifier column, or None."""
        id_column = model.id_column
        if "id" in self.where:
            return self.where["id"]
        if id_column and id_column in self.where:
            return self.where[id_column]
        return None

    def to_args(self) -> dict[str, Any]:
        """Plain-data form used for cache keys, errors and sub-queries."""
        return self.model_dump(by_alias=True, exclude_defaults=True)

    def derive(self, **updates: Any) -> "QueryRequest":
        """Copy with fields replaced, without re-running normalization."""
        return self.model_copy(update=updates)


def normalize_predicate(name: str, value: Any, model_name: str | None = None) -> Any:
    """
    Normalize one `where` entry.

    Single-operator objects `{eq: x}` collapse to `x` and `{in: [...]}` to
    the list; other operators are validated and kept.
    """
    if name == "relation" or not isinstance(value, dict):
        return value

    if len(value) != 1:
        raise InvalidRequest(
            f"statement must have one comparison operator in where {name}", model=model_name
        )
    operator, operand = next(iter(value.items()))
    if operator not in OPERATORS:
        raise InvalidRequest(f"invalid operator {operator} in where {name}", model=model_name)

    if operator == "in":
        if not isinstance(operand, list):
            raise InvalidRequest(f"in value must be array in where {name}", model=model_name)
        return list(operand)
    if operator == "between":
        if not isinstance(operand, list) or len(operand) != 2:
            raise InvalidRequest(
                f"between value must be array with 2 elements in where {name}", model=model_name
            )
        return {operator: list(operand)}
    if isinstance(operand, (dict, list)):
        raise InvalidRequest(
            f"invalid value type for operator {operator} in where {name}", model=model_name
        )
    if operator == "eq":
        return operand
    return {operator: operand}

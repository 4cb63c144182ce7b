"""
Model metadata for modelquery.

A Model describes one entity table: its columns, the roles the standard
columns play, how its JSON payload is stored, which access-identity column
`own` scope filters on, its per-query concurrency limit, and its views and
relations.

Rows are revisioned: every revision has its own `id`, shares the
`originalId` of the first revision, and points at its predecessor through
`parentId`. The current revision is the one no other row names as parent.
"""
from __future__ import annotations

import base64
import hashlib
import json
import logging
import zlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from modelquery.config.schemas import ModelDefinition, RelationDefinition

if TYPE_CHECKING:
    from modelquery.session import Session
    from .record import Record

logger = logging.getLogger(__name__)

# Standard column roles, in the order they are added to a model
DEFAULT_COLUMNS = ("id", "originalId", "parentId", "accountId", "createTime", "data")

# Soft-delete flag column
DELETED_COLUMN = "d"

# Prefix marking a compressed payload
COMPRESSED_PREFIX = "z:"


@dataclass
class Model:
    """
    Entity metadata consulted by every stage of a query.

    Attributes:
        name: Unique model name (also the table name)
        columns: Column names, sorted
        access_id_name: Column filtered on for `own` scope
        concurrency: Fan-out limit for related and resolve queries
        cache_enabled: Whether query results for this model may be cached
        compression: Whether payloads are stored compressed
        action_states: Filter property -> access-control state name
        views: Named views; aliases map to lists of names; `default` applies
            when the request does not select views
        relations: Declared relations keyed by related model name
    """

    name: str
    columns: list[str] = field(default_factory=lambda: sorted(DEFAULT_COLUMNS))
    access_id_name: str | None = None
    concurrency: int = 5
    cache_enabled: bool = True
    compression: bool = False
    action_states: dict[str, str] = field(default_factory=dict)
    views: dict[str, Any] = field(default_factory=dict)
    relations: dict[str, RelationDefinition] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.columns = sorted(set(self.columns))
        if self.access_id_name is None and "accountId" in self.columns:
            self.access_id_name = "accountId"
        if self.soft_delete and "isDeleted" not in self.action_states:
            self.action_states = {"isDeleted": "deleted", **self.action_states}

    @classmethod
    def from_definition(
        cls,
        definition: ModelDefinition | dict[str, Any],
        default_concurrency: int = 5,
    ) -> "Model":
        """Build a model from a declarative definition."""
        if isinstance(definition, dict):
            definition = ModelDefinition(**definition)

        flags = {
            "id": definition.id_column,
            "originalId": definition.id_column and definition.original_id,
            "parentId": definition.id_column and definition.original_id,
            "accountId": definition.account_id,
            "createTime": True,
            "data": definition.data_column,
        }
        columns = [role for role in DEFAULT_COLUMNS if flags[role]]
        if definition.soft_delete:
            columns.append(DELETED_COLUMN)
        columns.extend(definition.columns)

        return cls(
            name=definition.name,
            columns=columns,
            access_id_name=definition.access_id_name,
            concurrency=definition.concurrency or default_concurrency,
            cache_enabled=definition.cache,
            compression=definition.compression,
            action_states=dict(definition.action_states or {}),
            views=dict(definition.views),
            relations=dict(definition.relations),
        )

    # =========================================================================
    # Columns
    # =========================================================================

    @property
    def default_columns(self) -> dict[str, str]:
        """Map of standard role -> column name for roles this model has."""
        roles = DEFAULT_COLUMNS + (DELETED_COLUMN,)
        return {role: role for role in roles if role in self.columns}

    def has_column(self, name: str) -> bool:
        return name in self.columns

    def column_name(self, name: str) -> str | None:
        """Column for a name or role, or None when the model lacks it."""
        if name == "isDeleted":
            name = DELETED_COLUMN
        return name if name in self.columns else None

    @property
    def id_column(self) -> str | None:
        return self.column_name("id")

    @property
    def original_id_column(self) -> str | None:
        return self.column_name("originalId")

    @property
    def data_column(self) -> str | None:
        return self.column_name("data")

    @property
    def soft_delete(self) -> bool:
        return DELETED_COLUMN in self.columns

    @property
    def columns_id(self) -> str:
        """Stable fingerprint of the column set."""
        digest = hashlib.md5(json.dumps(self.columns).encode("utf-8"))
        return digest.hexdigest()

    # =========================================================================
    # Payload encoding
    # =========================================================================

    def encode_data(self, data: dict[str, Any] | None) -> str:
        """Serialize a payload for storage, compressing when enabled."""
        encoded = json.dumps(data or {}, sort_keys=True)
        if not self.compression:
            return encoded
        packed = base64.b64encode(zlib.compress(encoded.encode("utf-8")))
        return COMPRESSED_PREFIX + packed.decode("ascii")

    def decode_data(self, row: dict[str, Any]) -> dict[str, Any]:
        """
        Decode the payload column of a row in place.

        Safe to call more than once: already-decoded payloads are left alone.
        """
        column = self.data_column
        if column is None:
            return row
        value = row.get(column)
        if isinstance(value, str):
            if value.startswith(COMPRESSED_PREFIX):
                packed = base64.b64decode(value[len(COMPRESSED_PREFIX):])
                value = zlib.decompress(packed).decode("utf-8")
            row[column] = json.loads(value) if value else {}
        elif value is None:
            row[column] = {}
        return row

    # =========================================================================
    # Instances
    # =========================================================================

    def new_instance(
        self,
        raw: dict[str, Any],
        session: Session | None = None,
        allow: bool = False,
    ) -> Record:
        """Hydrate a raw row into a Record."""
        from .record import Record

        self.decode_data(raw)
        return Record(model=self, raw=raw, session=session, allow=allow)

    def __repr__(self) -> str:
        return f"Model(name={self.name!r}, columns={self.columns!r})"

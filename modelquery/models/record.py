"""
Hydrated entity returned by queries.
"""
from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from modelquery.session import Session
    from .model import Model


def to_plain(value: Any) -> Any:
    """Recursively convert records inside value to plain dicts."""
    if isinstance(value, Record):
        return value.to_dict()
    if isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


class Record:
    """
    One row of a model, with its payload decoded.

    The raw row is kept as returned by the store, so `raw["data"]` and
    `record.data` are the same dict; resolution and views mutate it.
    """

    def __init__(
        self,
        model: Model,
        raw: dict[str, Any],
        session: Session | None = None,
        allow: bool = False,
    ):
        self.model = model
        self.raw = raw
        self.session = session
        self.allow = allow

    @property
    def id(self) -> str | None:
        return self.raw.get("id")

    @property
    def original_id(self) -> str | None:
        return self.raw.get("originalId")

    @property
    def parent_id(self) -> str | None:
        return self.raw.get("parentId")

    @property
    def account_id(self) -> str | None:
        return self.raw.get("accountId")

    @property
    def data(self) -> dict[str, Any]:
        return self.raw.get("data") or {}

    @property
    def related(self) -> dict[str, Any]:
        """Related records attached by `with`, keyed by relation name."""
        return self.raw.get("_related") or {}

    @property
    def is_deleted(self) -> bool:
        return bool(self.raw.get("d"))

    def get(self, key: str, default: Any = None) -> Any:
        """Read a payload property."""
        return self.data.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        """Serialize record (and anything resolved into it) to plain data."""
        result: dict[str, Any] = {}
        for column in self.model.columns:
            if column == "d":
                continue
            if column in self.raw:
                result[column] = to_plain(self.raw[column])
        if self.model.soft_delete:
            result["isDeleted"] = self.is_deleted
        if "_related" in self.raw:
            result["_related"] = to_plain(self.raw["_related"])
        return result

    def __deepcopy__(self, memo: dict[int, Any]) -> "Record":
        # model and session are shared; only the row is copied
        return Record(self.model, copy.deepcopy(self.raw, memo), self.session, self.allow)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return self.model.name == other.model.name and self.raw == other.raw

    def __repr__(self) -> str:
        return f"Record(model={self.model.name!r}, id={self.id!r})"

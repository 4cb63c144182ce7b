"""
Reference resolution.

Payloads often hold references to other entities: `ownerId: "<hex id>"`,
`tags: ["<id>", "<id>"]`, `barOriginalId: {"<id>": true}`. When a query asks
to `resolve`, each candidate property is classified by its name and its
value is replaced with the hydrated entities it points at.

Classification, by suffix:

    posts           -> plural, model "post", referenced by name
    ownerId         -> model "owner", id reference
    barOriginalId   -> model "bar", original-id reference (current revision)
    barOriginalIds  -> plural of the above

Identifier references are written under the model name (pluralized when
the property was plural) and the identifier property is removed; name
references are written back to the same property.
"""
from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping

from modelquery.errors import InvalidResolveTarget
from modelquery.utils import deep_merge, gather_bounded

from .cursor import entity_id
from .request import ResolveOverride

if TYPE_CHECKING:
    from .executor import Query

logger = logging.getLogger(__name__)

# Identifier-shaped values: 32 lowercase hex characters
ID_PATTERN = re.compile(r"^[a-f0-9]{32}$")


def is_id(value: Any) -> bool:
    return isinstance(value, str) and ID_PATTERN.match(value) is not None


class ReferenceKind(str, Enum):
    """How a payload property refers to another model."""

    ID = "id"
    ORIGINAL_ID = "original_id"
    NAME = "name"


@dataclass(frozen=True)
class ResolutionTarget:
    """
    Everything needed to resolve one payload property.

    Attributes:
        property: Payload property holding the reference
        model_property: Property with any plural `s` stripped
        kind: Reference kind derived from the property name
        plural: Whether the property name was plural
        model_name: Model the reference points at
        id_column: Identifier column of that model
        set_property: Property the resolved value is written to
        original: Query by original id (selecting current revisions)
        query_args: Extra arguments deep-merged into the sub-query
        item_property: For lists of mappings, the key holding each id
    """

    property: str
    model_property: str
    kind: ReferenceKind
    plural: bool
    model_name: str
    id_column: str
    set_property: str
    original: bool = False
    query_args: dict[str, Any] | None = None
    item_property: str | None = None

    @property
    def is_id_column(self) -> bool:
        return self.kind is not ReferenceKind.NAME


def classify(property: str, model_property: str | None = None) -> tuple[str, ReferenceKind, bool, str]:
    """
    Classify a payload property by name.

    Returns:
        (model_property, kind, plural, implied model name)
    """
    plural = property.endswith("s")
    if model_property is None:
        model_property = property[:-1] if plural else property
    if model_property.endswith("OriginalId"):
        return model_property, ReferenceKind.ORIGINAL_ID, plural, model_property[:-10]
    if model_property.endswith("Id"):
        return model_property, ReferenceKind.ID, plural, model_property[:-2]
    return model_property, ReferenceKind.NAME, plural, model_property


class ReferenceResolver:
    """Resolves the value of one payload property in place."""

    def __init__(self, query: Query, data: dict[str, Any], target: ResolutionTarget):
        self.query = query
        self.data = data
        self.target = target

    def query_args(self, ids: str | list[str]) -> dict[str, Any]:
        target = self.target
        args: dict[str, Any] = {
            "allow": self.query.request.allow,
            "where": {target.id_column: ids},
        }
        if isinstance(ids, list):
            args["all"] = True
        else:
            args["limit"] = 1
        if target.original:
            args["current"] = True
        if target.query_args:
            deep_merge(args, copy.deepcopy(target.query_args))
        return args

    async def run(self, ids: str | list[str]) -> Any:
        engine = self.query.engine
        return await engine.query(self.target.model_name, self.query_args(ids), self.query.session)

    async def resolve(self) -> None:
        value = self.data.get(self.target.property)
        if isinstance(value, str):
            if not is_id(value):
                return
            entity = await self.run(value)
            if entity is not None:
                self.write(entity)
        elif isinstance(value, list):
            if self.target.item_property:
                ids = [
                    item.get(self.target.item_property)
                    for item in value
                    if isinstance(item, Mapping) and is_id(item.get(self.target.item_property))
                ]
            else:
                ids = [item for item in value if is_id(item)]
            if not ids:
                return
            self.write(await self.run(ids))
        elif isinstance(value, Mapping):
            ids = [key for key in value if is_id(key)]
            if not ids:
                return
            column = "originalId" if self.target.original else self.target.id_column
            entities = await self.run(ids)
            self.write({entity_id(e, column): e for e in entities or []})

    def write(self, value: Any) -> None:
        target = self.target
        self.data[target.set_property] = value
        if target.is_id_column and target.set_property != target.property:
            self.data.pop(target.property, None)


class ResolutionContext:
    """
    Resolves the payload of one row for a query.

    With `resolve: true` every payload property is a candidate; with a
    mapping only the listed properties are, each with optional overrides.
    """

    def __init__(self, query: Query, row: dict[str, Any]):
        self.query = query
        self.row = row

    @property
    def data(self) -> dict[str, Any] | None:
        column = self.query.model.data_column
        if column is None:
            return None
        self.query.model.decode_data(self.row)
        data = self.row.get(column)
        return data if isinstance(data, dict) else None

    def candidates(self, data: dict[str, Any]) -> list[tuple[str, ResolveOverride | None]]:
        resolve = self.query.request.resolve
        if isinstance(resolve, dict):
            return [
                (prop, override if isinstance(override, ResolveOverride) else None)
                for prop, override in resolve.items()
                if override is not False
            ]
        return [(prop, None) for prop in list(data.keys())]

    def target(
        self,
        data: dict[str, Any],
        property: str,
        override: ResolveOverride | None = None,
    ) -> ResolutionTarget | None:
        """
        Build the target for a property, or None when it is not resolvable.

        Raises:
            InvalidResolveTarget: If an explicit modelName is not a known model
        """
        registry = self.query.engine.registry
        model_property, kind, plural, implied = classify(
            property, override.model_property if override else None
        )

        if override is not None and override.model_name:
            if not registry.has(override.model_name):
                raise InvalidResolveTarget(
                    f"invalid modelName {override.model_name} in resolve",
                    model=self.query.model.name,
                )
            model_name = override.model_name
        else:
            model_name = implied
            if not registry.has(model_name):
                return None

        related = registry.get(model_name)
        id_column = related.id_column
        if id_column is None:
            return None

        original = kind is ReferenceKind.ORIGINAL_ID
        item_property = None
        value = data.get(property)
        if isinstance(value, list) and value and isinstance(value[0], Mapping):
            first = value[0]
            if related.original_id_column and first.get(related.original_id_column) is not None:
                original = True
                item_property = related.original_id_column
            elif first.get(id_column) is not None:
                original = False
                item_property = id_column
            else:
                return None

        if override is not None and override.is_original_id is not None:
            original = override.is_original_id

        if override is not None and override.set_property:
            set_property = override.set_property
        elif kind is not ReferenceKind.NAME:
            set_property = f"{model_name}s" if plural else model_name
        else:
            set_property = property

        return ResolutionTarget(
            property=property,
            model_property=model_property,
            kind=kind,
            plural=plural,
            model_name=model_name,
            id_column=id_column,
            set_property=set_property,
            original=original,
            query_args=override.query_args if override else None,
            item_property=item_property,
        )

    async def resolve(self) -> None:
        data = self.data
        if data is None:
            return
        targets = []
        for prop, override in self.candidates(data):
            target = self.target(data, prop, override)
            if target is not None:
                targets.append(target)
        if not targets:
            return

        logger.debug(
            f"[resolve] {self.query.model.name}: resolving {[t.property for t in targets]}"
        )
        await gather_bounded(
            targets,
            lambda t: ReferenceResolver(self.query, data, t).resolve(),
            self.query.model.concurrency,
        )

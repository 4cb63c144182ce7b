"""
Relations between models.

A relation links rows of `model` to rows of `related`, either directly
(one side carries a column holding the other side's id or original id) or
through a link model named by `via`, whose rows hold a column for each side.

Original-id columns are preferred over id columns so that a relation keeps
pointing at the entity across revisions.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from modelquery.errors import InvalidRequest

if TYPE_CHECKING:
    from modelquery.config.schemas import RelationDefinition
    from .model import Model


@dataclass(frozen=True)
class Relation:
    """
    Resolved relation from `model` to `related`.

    Attributes:
        model: Name of the model the relation starts from
        related: Name of the related model
        model_id_column: Column on `model` rows supplying the join key
        relation_id_column: Column on `related` rows matched against the key
            (direct) or against the link row (via)
        via: Link model name, if any
        via_model_id_column: Link column matched against model_id_column
        via_relation_id_column: Link column matched against relation_id_column
    """

    model: str
    related: str
    model_id_column: str
    relation_id_column: str
    via: str | None = None
    via_model_id_column: str | None = None
    via_relation_id_column: str | None = None

    @property
    def is_via(self) -> bool:
        return self.via is not None

    def reverse(self) -> "Relation":
        """Same relation seen from the related model."""
        return Relation(
            model=self.related,
            related=self.model,
            model_id_column=self.relation_id_column,
            relation_id_column=self.model_id_column,
            via=self.via,
            via_model_id_column=self.via_relation_id_column,
            via_relation_id_column=self.via_model_id_column,
        )


def _link_columns(owner: Model, target: Model) -> tuple[str, str] | None:
    """
    Find the column on `target` that points at `owner`.

    Returns:
        (owner key column, target column) or None
    """
    if owner.original_id_column and target.has_column(f"{owner.name}OriginalId"):
        return owner.original_id_column, f"{owner.name}OriginalId"
    if owner.id_column and target.has_column(f"{owner.name}Id"):
        return owner.id_column, f"{owner.name}Id"
    return None


def build_relation(
    model: Model,
    related: Model,
    definition: RelationDefinition,
    via_model: Model | None = None,
) -> Relation:
    """
    Work out the join columns for a declared relation.

    Explicit columns in the definition override the derived ones.

    Raises:
        InvalidRequest: If no linking columns can be found
    """
    if definition.via:
        if via_model is None:
            raise InvalidRequest(
                f"link model {definition.via} required for relation {related.name}",
                model=model.name,
            )
        model_side = _link_columns(model, via_model)
        related_side = _link_columns(related, via_model)
        if model_side is None or related_side is None:
            raise InvalidRequest(
                f"invalid id column for relation {related.name} via {via_model.name}",
                model=model.name,
            )
        return Relation(
            model=model.name,
            related=related.name,
            model_id_column=definition.model_id_column or model_side[0],
            relation_id_column=definition.relation_id_column or related_side[0],
            via=via_model.name,
            via_model_id_column=definition.via_model_id_column or model_side[1],
            via_relation_id_column=definition.via_relation_id_column or related_side[1],
        )

    # direct relation can go either way
    columns = _link_columns(model, related)
    if columns is None:
        inverse = _link_columns(related, model)
        if inverse is not None:
            columns = (inverse[1], inverse[0])
    if columns is None:
        if definition.model_id_column and definition.relation_id_column:
            columns = (definition.model_id_column, definition.relation_id_column)
        else:
            raise InvalidRequest(
                f"invalid id column for relation {related.name}",
                model=model.name,
            )
    return Relation(
        model=model.name,
        related=related.name,
        model_id_column=definition.model_id_column or columns[0],
        relation_id_column=definition.relation_id_column or columns[1],
    )

"""Business entity snapshots and per-type field accessors.

Entities (listings, ASINs) are owned by external services; the rule engine
only sees read-only snapshots. A FieldAccessor bounds which root fields a
condition may reach for a given entity type, so a typo in a rule reads as
a missing field instead of walking arbitrary attributes.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any

from sellerops.shared.utils.paths import MISSING, resolve_path

_BUILTIN_FIELDS = frozenset({"id", "entity_type", "category", "tags"})

ENTITY_FIELD_SCHEMAS: dict[str, frozenset[str]] = {
    "listing": frozenset({
        "sku", "asin", "title", "brand", "marketplace", "status",
        "price", "cost", "margin", "score", "bsr", "stock", "reviews", "rating",
        "buy_box_price", "buy_box_owner", "features", "metrics", "competitors",
    }),
    "asin": frozenset({
        "asin", "title", "brand", "marketplace",
        "price", "bsr", "reviews", "rating", "score",
        "buy_box_price", "offers", "metrics", "competitors",
    }),
}


@dataclass(frozen=True)
class Entity:
    """Read-only snapshot of a business entity evaluated by a rule."""

    id: str
    entity_type: str
    data: Mapping[str, Any] = field(default_factory=dict)
    category: str | None = None
    tags: frozenset[str] = frozenset()

    @cached_property
    def view(self) -> dict[str, Any]:
        """Flat mapping used for dot-path lookups and template interpolation."""
        return {
            **self.data,
            "id": self.id,
            "entity_type": self.entity_type,
            "category": self.category,
            "tags": sorted(self.tags),
        }

    def in_category(self, category: str | None) -> bool:
        return category is not None and self.category == category

    def has_tag(self, tag: str | None) -> bool:
        return tag is not None and tag in self.tags

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Entity":
        """Build from a plain dict (API payloads, lookup adapters)."""
        payload = dict(data)
        entity_id = payload.pop("id")
        entity_type = payload.pop("entity_type", None) or payload.pop("entityType", "listing")
        category = payload.pop("category", None)
        tags = frozenset(payload.pop("tags", None) or ())
        nested = payload.pop("data", None)
        if isinstance(nested, Mapping):
            payload.update(nested)
        return cls(
            id=str(entity_id),
            entity_type=entity_type,
            data=payload,
            category=category,
            tags=tags,
        )


@dataclass(frozen=True)
class FieldAccessor:
    """Dot-path reader bounded to known root fields for one entity type.

    fields=None means unbounded (unknown entity types).
    """

    entity_type: str
    fields: frozenset[str] | None = None

    def allows(self, path: str) -> bool:
        root = path.split(".", 1)[0]
        return self.fields is None or root in _BUILTIN_FIELDS or root in self.fields

    def get(self, entity: Entity, path: str) -> Any:
        """Return the value at path, or MISSING if absent or outside the schema."""
        if not self.allows(path):
            return MISSING
        return resolve_path(entity.view, path)


_ACCESSORS: dict[str, FieldAccessor] = {
    entity_type: FieldAccessor(entity_type, fields)
    for entity_type, fields in ENTITY_FIELD_SCHEMAS.items()
}


def accessor_for(entity_type: str) -> FieldAccessor:
    """Return the accessor registered for entity_type (unbounded if unknown)."""
    return _ACCESSORS.get(entity_type) or FieldAccessor(entity_type)

"""Service interfaces (ports) for external business collaborators.

The automation core never touches listings, prices or tasks directly;
action executors and job handlers go through these protocols.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from sellerops.domain.entities import Entity, Scope


class IEntityLookup(Protocol):
    """Resolves rule scopes to entity snapshots."""

    async def get(self, entity_type: str, entity_id: str) -> Entity | None:
        """Return one entity snapshot, or None if it no longer exists."""

    async def resolve(self, scope: Scope) -> list[Entity]:
        """Return every entity in scope (category, tag, all or single)."""


class ITaskService(Protocol):
    async def create(
        self,
        *,
        title: str,
        description: str | None,
        entity_id: str | None,
        priority: str,
        stage: str | None,
        source: str,
        metadata: dict[str, Any],
    ) -> dict[str, Any]:
        """Create a task; the returned dict includes its 'id'."""

    async def delete(self, task_id: str) -> None:
        """Remove a task (rollback)."""


class IPricingService(Protocol):
    async def get_current_price(self, entity_id: str) -> Decimal | None:
        """Return the live price, or None if the entity has none."""

    async def get_buy_box_price(self, entity_id: str) -> Decimal | None:
        """Return the current Buy Box price, or None if unknown."""

    async def calculate_min_price_for_margin(
        self, entity_id: str, min_margin_percent: float
    ) -> Decimal:
        """Return the lowest price that keeps the given margin."""

    async def update_price(
        self, entity_id: str, new_price: Decimal, *, reason: str | None = None
    ) -> dict[str, Any]:
        """Publish a price change to the marketplace."""


class IAlertService(Protocol):
    async def send(
        self,
        *,
        severity: str,
        title: str,
        message: str,
        entity_id: str | None,
        metadata: dict[str, Any],
    ) -> dict[str, Any]:
        """Send an alert; the returned dict includes its 'id'."""


class ITagService(Protocol):
    async def add_tag(self, entity_type: str, entity_id: str, tag: str) -> bool:
        """Attach a tag; return False if it was already present."""

    async def remove_tag(self, entity_type: str, entity_id: str, tag: str) -> bool:
        """Detach a tag; return False if it was not present."""


class ITemplateService(Protocol):
    async def apply(self, entity_id: str, template_id: str) -> dict[str, Any]:
        """Apply a listing template to an entity."""


class IFeatureService(Protocol):
    async def compute(self, entity_id: str) -> dict[str, Any]:
        """Recompute derived features for one entity (expensive)."""

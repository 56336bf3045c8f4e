"""DTOs for rule firings: per-action results and the execution record."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sellerops.shared.enums import ExecutionStatus


@dataclass(frozen=True)
class ActionResult:
    """Returned by every action executor.

    rollback_data, when present, is enough for the same executor to undo
    the side effect.
    """

    success: bool
    result_data: dict[str, Any] = field(default_factory=dict)
    rollback_data: dict[str, Any] | None = None
    error: str | None = None

    @classmethod
    def failed(cls, error: str, **result_data: Any) -> "ActionResult":
        return cls(success=False, result_data=result_data, error=error)


@dataclass(frozen=True)
class ActionOutcome:
    """One action applied (or attempted) on one entity during a firing."""

    entity_id: str
    action: str
    success: bool
    result_data: dict[str, Any] = field(default_factory=dict)
    rollback_data: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "action": self.action,
            "success": self.success,
            "result_data": self.result_data,
            "rollback_data": self.rollback_data,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActionOutcome":
        return cls(
            entity_id=str(data.get("entity_id", "")),
            action=str(data.get("action", "")),
            success=bool(data.get("success", False)),
            result_data=dict(data.get("result_data") or {}),
            rollback_data=data.get("rollback_data"),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class ExecutionRecord:
    """Append-only audit row: one per rule firing that passed the gates."""

    id: str
    rule_id: str
    status: ExecutionStatus
    started_at: datetime
    completed_at: datetime | None
    entities_evaluated: int
    entities_matched: int
    action_results: tuple[ActionOutcome, ...] = ()
    trigger_context: dict[str, Any] = field(default_factory=dict)
    error_message: str | None = None

    @property
    def actions_executed(self) -> int:
        return sum(1 for r in self.action_results if r.success)

    @property
    def actions_failed(self) -> int:
        return sum(1 for r in self.action_results if not r.success)


@dataclass(frozen=True)
class EntityEvaluation:
    """Side-effect-free evaluation of one rule against one entity."""

    entity_id: str
    matched: bool
    failed_conditions: tuple[str, ...] = ()
    would_execute: tuple[dict[str, Any], ...] = ()

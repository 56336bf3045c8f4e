"""Shared enumerations for the automation core.

Cross-cutting enums used by the rule engine, the job core and the API.
Values are the tokens stored in the database and accepted in rule
configuration.
"""

from enum import Enum


class _ValuesMixin:
    """Mixin that adds a values() classmethod to str Enums."""

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid values as strings."""
        return [member.value for member in cls]


class JobStatus(_ValuesMixin, str, Enum):
    """Job lifecycle state. SUCCEEDED, CANCELLED and FAILED are terminal."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED)


class ExecutionStatus(_ValuesMixin, str, Enum):
    """Rule execution record status."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class ExecutionMode(_ValuesMixin, str, Enum):
    """How a matching rule applies its actions."""

    AUTO = "auto"
    APPROVAL_REQUIRED = "approval_required"
    DRY_RUN = "dry_run"


class TriggerKind(_ValuesMixin, str, Enum):
    THRESHOLD = "threshold"
    COMPETITIVE = "competitive"
    TIME = "time"
    EVENT = "event"


class ScopeKind(_ValuesMixin, str, Enum):
    ALL = "all"
    CATEGORY = "category"
    TAG = "tag"
    SINGLE = "single"


class ActionKind(_ValuesMixin, str, Enum):
    """Closed set of action kinds; every member must have an executor."""

    CREATE_TASK = "create_task"
    UPDATE_PRICE = "update_price"
    SEND_ALERT = "send_alert"
    TAG_ENTITY = "tag_entity"
    WEBHOOK = "webhook"
    APPLY_TEMPLATE = "apply_template"


class ThresholdOperator(_ValuesMixin, str, Enum):
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    EQ = "eq"
    CHANGE = "change"


class ChangeDirection(_ValuesMixin, str, Enum):
    UP = "up"
    DOWN = "down"
    ANY = "any"


class ConditionOperator(_ValuesMixin, str, Enum):
    """Operators supported by the condition evaluator."""

    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    MATCHES = "matches"
    EXISTS = "exists"
    IS_EMPTY = "is_empty"


class PriceAction(_ValuesMixin, str, Enum):
    """How update_price derives the new price."""

    SET = "set"
    INCREASE_PERCENT = "increase_percent"
    DECREASE_PERCENT = "decrease_percent"
    MATCH_BUYBOX = "match_buybox"
    UNDERCUT_BUYBOX = "undercut_buybox"


class WebhookAuthType(_ValuesMixin, str, Enum):
    NONE = "none"
    BEARER = "bearer"
    BASIC = "basic"
    API_KEY = "api_key"

"""ORM models. Import here so Base.metadata sees every table."""

from sellerops.infrastructure.persistence.models.job import DeadLetterEntry, Job
from sellerops.infrastructure.persistence.models.rule import AutomationRule, RuleExecution

__all__ = ["AutomationRule", "DeadLetterEntry", "Job", "RuleExecution"]

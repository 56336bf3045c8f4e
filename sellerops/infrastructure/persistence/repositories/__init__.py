"""Persistence repositories. Re-exports for dependency injection."""

from sellerops.infrastructure.persistence.repositories.base import BaseRepository
from sellerops.infrastructure.persistence.repositories.job_repo import JobRepository
from sellerops.infrastructure.persistence.repositories.rule_execution_repo import (
    RuleExecutionRepository,
)
from sellerops.infrastructure.persistence.repositories.rule_repo import RuleRepository

__all__ = [
    "BaseRepository",
    "JobRepository",
    "RuleExecutionRepository",
    "RuleRepository",
]

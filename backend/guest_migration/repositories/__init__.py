"""Repositories that translate between ORM rows and domain models."""

from .account_data import AccountDataRepository, account_data
from .checkpoints import CheckpointRepository, checkpoints

__all__ = [
    "AccountDataRepository",
    "CheckpointRepository",
    "account_data",
    "checkpoints",
]

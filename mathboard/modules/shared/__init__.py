"""
Shared domain building blocks: base service, base repository and the
domain exception hierarchy.
"""

from mathboard.modules.shared.base_repository import BaseRepository
from mathboard.modules.shared.base_service import BaseService
from mathboard.modules.shared.exceptions import (
    DuplicateRewardError,
    MathboardDomainException,
    NotFoundError,
    PartitionPersistenceError,
    RewardAwardError,
    ValidationError,
)

__all__ = [
    "BaseRepository",
    "BaseService",
    "DuplicateRewardError",
    "MathboardDomainException",
    "NotFoundError",
    "PartitionPersistenceError",
    "RewardAwardError",
    "ValidationError",
]

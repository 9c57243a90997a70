"""
Leaderboard domain errors.

Raised for bad input, missing records, reward payout problems and failed
snapshot partitions. Backups and rollovers catch these and fold them into
their result objects; the read and write APIs let them propagate.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from mathboard.core import exceptions as core_exceptions
from mathboard.core.exceptions import ErrorSeverity


class MathboardDomainException(Exception):
    severity: ErrorSeverity = ErrorSeverity.ERROR
    is_retryable: bool = False
    error_code: str = "DOMAIN_ERROR"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "retryable": self.is_retryable,
            **self.details,
        }


class ValidationError(MathboardDomainException):
    """Unknown difficulty, negative score, malformed month and the like."""

    severity = ErrorSeverity.INFO
    error_code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"Invalid {field}: {message}", field=field)
        self.field = field


class NotFoundError(MathboardDomainException):
    severity = ErrorSeverity.INFO
    error_code = "NOT_FOUND"

    def __init__(self, resource_type: str, identifier: Optional[Any] = None) -> None:
        suffix = f" ({identifier})" if identifier is not None else ""
        super().__init__(f"No {resource_type}{suffix}", resource_type=resource_type, identifier=identifier)
        self.resource_type = resource_type
        self.identifier = identifier


class RewardAwardError(MathboardDomainException):
    """Crediting coins failed; the claim row was rolled back with it."""

    error_code = "REWARD_AWARD_FAILED"

    def __init__(self, player_id: int, amount: int, reason: str) -> None:
        super().__init__(
            f"Could not credit {amount} coins to player {player_id}: {reason}",
            player_id=player_id,
            amount=amount,
        )
        self.player_id = player_id
        self.amount = amount
        self.reason = reason


class DuplicateRewardError(MathboardDomainException):
    """The claim ledger already holds this (player, claim type, claim key)."""

    severity = ErrorSeverity.WARNING
    error_code = "REWARD_ALREADY_CLAIMED"

    def __init__(self, player_id: int, claim_type: str, claim_key: str) -> None:
        super().__init__(
            f"Player {player_id} already claimed {claim_type} {claim_key}",
            player_id=player_id,
            claim_type=claim_type,
            claim_key=claim_key,
        )
        self.player_id = player_id
        self.claim_type = claim_type
        self.claim_key = claim_key


class PartitionPersistenceError(MathboardDomainException):
    """One (region, difficulty) snapshot could not be written."""

    is_retryable = True
    error_code = "PARTITION_PERSIST_FAILED"

    def __init__(self, region: str, difficulty: int, reason: str) -> None:
        super().__init__(
            f"Snapshot {region}/d{difficulty} not persisted: {reason}",
            region=region,
            difficulty=difficulty,
        )
        self.region = region
        self.difficulty = difficulty
        self.reason = reason


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, MathboardDomainException):
        return exc.is_retryable
    return core_exceptions.is_transient_error(exc)


def get_error_severity(exc: BaseException) -> ErrorSeverity:
    if isinstance(exc, MathboardDomainException):
        return exc.severity
    return core_exceptions.get_error_severity(exc)

"""
Custom exceptions for the scoring recalculation engine with operator-friendly messages.
"""

class ScoringException(Exception):
    """Base exception for scoring-related errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class ConfigError(ScoringException):
    """Raised (and recorded, never fatal) when a multiplier setting is unusable."""
    def __init__(self, key: str, value, default: float):
        self.key = key
        self.value = value
        self.default = default
        super().__init__(
            f"Invalid multiplier {key}={value!r}, using default {default}",
            f"⚠️ `{key}` is invalid, default {default} applied."
        )

class AggregationError(ScoringException):
    """Raised when roster or raw score reads fail before any write."""
    def __init__(self, episode_number: int, details: str = None):
        super().__init__(
            f"Aggregation failed for episode {episode_number}: {details}",
            "❌ Could not read roster or box score data. Nothing was written."
        )

class CalculationError(ScoringException):
    """Raised when weighted points cannot be computed (e.g. decimal overflow)."""
    def __init__(self, episode_number: int, details: str = None):
        super().__init__(
            f"Score calculation failed for episode {episode_number}: {details}",
            "❌ Could not calculate weighted scores. Nothing was written."
        )

class PersistenceError(ScoringException):
    """Raised when the episode score batch cannot be written."""
    def __init__(self, episode_number: int, details: str = None):
        super().__init__(
            f"Persisting scores failed for episode {episode_number}: {details}",
            "❌ Failed to save episode scores. Previous scores are unchanged."
        )

class RebuildError(ScoringException):
    """Raised when the standings cache cannot be rebuilt."""
    def __init__(self, scope: str, details: str = None):
        super().__init__(
            f"Standings rebuild ({scope}) failed: {details}",
            "❌ Failed to rebuild standings. Previous standings are unchanged."
        )

class ConcurrencyError(ScoringException):
    """Raised when another recalculation holds the lock."""
    def __init__(self, lock_name: str):
        self.lock_name = lock_name
        super().__init__(
            f"Lock '{lock_name}' is held by another recalculation",
            "❌ A recalculation for this episode is already running."
        )

class InvalidQueenNameError(ScoringException):
    """Raised when a queen name is empty after normalization."""
    def __init__(self, raw_name):
        super().__init__(
            f"Invalid queen name: {raw_name!r}",
            "❌ Queen name cannot be empty!"
        )

class RosterValidationError(ScoringException):
    """Raised when a roster submission is rejected."""
    def __init__(self, reason: str):
        super().__init__(
            f"Invalid roster: {reason}",
            f"❌ {reason}"
        )

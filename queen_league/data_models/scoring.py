"""
Scoring data models for the episode recalculation engine.

Provides immutable data transfer objects passed between the resolver,
calculator, score store and orchestrator.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple

from queen_league.config import Config


class RecalculationState(Enum):
    IDLE = "idle"
    RESOLVING_CONFIG = "resolving_config"
    AGGREGATING = "aggregating"
    CALCULATING = "calculating"
    PERSISTING = "persisting"
    REBUILDING = "rebuilding"
    DONE = "done"
    FAILED = "failed"


class RunStatus(Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class ScoringConfig:
    """Rank multipliers resolved once per run."""
    multipliers: Dict[int, float]
    fallback_multiplier: float = Config.FALLBACK_MULTIPLIER
    
    def multiplier_for(self, rank: int) -> float:
        return self.multipliers.get(rank, self.fallback_multiplier)


@dataclass(frozen=True)
class RosterEntry:
    """Snapshot of one roster pick."""
    user_id: int
    league_id: int
    episode_number: int
    queen_name: str
    rank: int


@dataclass(frozen=True)
class EpisodeScoreCandidate:
    """Weighted score for one roster pick, ready to persist."""
    user_id: int
    league_id: int
    queen_name: str
    episode_number: int
    rank: int
    calculated_points: Decimal
    
    @property
    def identity(self) -> Tuple[int, int, str, int]:
        return (self.user_id, self.league_id, self.queen_name, self.episode_number)
    
    @property
    def standings_key(self) -> Tuple[int, int]:
        return (self.user_id, self.league_id)


@dataclass(frozen=True)
class PersistResult:
    rows_upserted: int
    rows_removed: int
    affected_pairs: frozenset


@dataclass(frozen=True)
class RunResult:
    """Terminal outcome of one recalculation run."""
    episode_number: int
    status: RunStatus
    state: RecalculationState
    rows_updated: int = 0
    rows_removed: int = 0
    standings_updated: int = 0
    multipliers: Dict[int, float] = field(default_factory=dict)
    config_warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None
    failed_step: Optional[RecalculationState] = None
    duration_seconds: float = 0.0
    
    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.COMPLETED

"""
Standings data models for leaderboard and dashboard read paths.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class StandingsEntry:
    """Single standings row."""
    rank: int
    user_id: int
    username: str
    league_id: int
    total_score: float


@dataclass(frozen=True)
class EpisodeScoreRow:
    user_id: int
    league_id: int
    queen_name: str
    episode_number: int
    rank: int
    calculated_points: float


@dataclass(frozen=True)
class GlobalLeaderboardEntry:
    rank: int
    user_id: int
    username: str
    total_score: float
    mvp_queen: Optional[str]


@dataclass(frozen=True)
class UserLeagueSummary:
    league_id: int
    league_name: str
    invite_code: str
    season_total: float
    weekly_score: float
    member_count: int


@dataclass(frozen=True)
class TeamPick:
    queen_name: str
    rank: int
    calculated_points: float

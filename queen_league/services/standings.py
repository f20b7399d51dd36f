"""
Standings service for leaderboard and dashboard read paths.

Read-only views over the standings cache and the per-episode score store.
"""

import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, func, and_

from queen_league.services.base import BaseService
from queen_league.data_models.standings import (
    StandingsEntry, EpisodeScoreRow, GlobalLeaderboardEntry, UserLeagueSummary, TeamPick
)
from queen_league.database.models import (
    User, League, LeagueMember, Roster, UserQueenScore, LeagueStanding
)

logger = logging.getLogger(__name__)


class StandingsService(BaseService):
    """Service for standings and score queries."""
    
    async def read_standings(self, league_id: Optional[int] = None) -> List[StandingsEntry]:
        """
        Ranked season standings for active users, per league.
        
        Args:
            league_id: Restrict to one league; all leagues when omitted
            
        Returns:
            Entries ordered by league, then rank (ties share a rank)
        """
        rank_column = func.rank().over(
            partition_by=LeagueStanding.league_id,
            order_by=LeagueStanding.total_score.desc()
        ).label('rank')
        query = (
            select(
                rank_column,
                LeagueStanding.user_id,
                User.username,
                LeagueStanding.league_id,
                LeagueStanding.total_score
            )
            .join(User, User.id == LeagueStanding.user_id)
            .where(User.is_active.is_(True))
        )
        if league_id is not None:
            query = query.where(LeagueStanding.league_id == league_id)
        
        async with self.get_session() as session:
            result = await session.execute(query)
            rows = result.all()
        
        entries = [
            StandingsEntry(
                rank=row.rank,
                user_id=row.user_id,
                username=row.username,
                league_id=row.league_id,
                total_score=row.total_score
            )
            for row in rows
        ]
        entries.sort(key=lambda e: (e.league_id, e.rank, e.user_id))
        return entries
    
    async def read_episode_scores(self, user_id: int, episode_number: int,
                                  league_id: Optional[int] = None) -> List[EpisodeScoreRow]:
        query = select(UserQueenScore).where(
            UserQueenScore.user_id == user_id,
            UserQueenScore.episode_number == episode_number
        )
        if league_id is not None:
            query = query.where(UserQueenScore.league_id == league_id)
        query = query.order_by(UserQueenScore.league_id, UserQueenScore.rank, UserQueenScore.queen_name)
        
        async with self.get_session() as session:
            result = await session.execute(query)
            return [
                EpisodeScoreRow(
                    user_id=score.user_id,
                    league_id=score.league_id,
                    queen_name=score.queen_name,
                    episode_number=score.episode_number,
                    rank=score.rank,
                    calculated_points=score.calculated_points
                )
                for score in result.scalars().all()
            ]
    
    async def get_global_leaderboard(self) -> List[GlobalLeaderboardEntry]:
        """
        Season totals across all leagues for every active user.
        
        The MVP queen is the queen who has contributed the most weighted
        points to that user so far (ties broken alphabetically).
        """
        async with self.get_session() as session:
            totals_result = await session.execute(
                select(
                    User.id.label('user_id'),
                    User.username,
                    func.coalesce(func.sum(LeagueStanding.total_score), 0.0).label('total_score')
                )
                .outerjoin(LeagueStanding, LeagueStanding.user_id == User.id)
                .where(User.is_active.is_(True))
                .group_by(User.id, User.username)
            )
            totals = totals_result.all()
            
            queen_result = await session.execute(
                select(
                    UserQueenScore.user_id,
                    UserQueenScore.queen_name,
                    func.sum(UserQueenScore.calculated_points).label('queen_points')
                )
                .group_by(UserQueenScore.user_id, UserQueenScore.queen_name)
            )
            queen_rows = queen_result.all()
        
        mvp: Dict[int, Tuple[float, str]] = {}
        for row in queen_rows:
            current = mvp.get(row.user_id)
            candidate = (row.queen_points or 0.0, row.queen_name)
            if current is None or candidate[0] > current[0] or (
                candidate[0] == current[0] and candidate[1] < current[1]
            ):
                mvp[row.user_id] = candidate
        
        ordered = sorted(totals, key=lambda r: (-r.total_score, r.username))
        entries = []
        previous_score = None
        rank = 0
        for position, row in enumerate(ordered, start=1):
            if row.total_score != previous_score:
                rank = position
                previous_score = row.total_score
            entries.append(GlobalLeaderboardEntry(
                rank=rank,
                user_id=row.user_id,
                username=row.username,
                total_score=round(float(row.total_score), 2),
                mvp_queen=mvp[row.user_id][1] if row.user_id in mvp else None
            ))
        return entries
    
    async def get_user_leagues(self, user_id: int, episode_number: int) -> List[UserLeagueSummary]:
        """Leagues a user belongs to, with season total, episode score and member count."""
        weekly_score = (
            select(func.coalesce(func.sum(UserQueenScore.calculated_points), 0.0))
            .where(
                UserQueenScore.user_id == user_id,
                UserQueenScore.episode_number == episode_number,
                UserQueenScore.league_id == League.id
            )
            .scalar_subquery()
        )
        member_count = (
            select(func.count(LeagueMember.id))
            .where(LeagueMember.league_id == League.id)
            .scalar_subquery()
        )
        query = (
            select(
                League.id,
                League.league_name,
                League.invite_code,
                func.coalesce(LeagueStanding.total_score, 0.0).label('season_total'),
                weekly_score.label('weekly_score'),
                member_count.label('member_count')
            )
            .join(LeagueMember, LeagueMember.league_id == League.id)
            .outerjoin(LeagueStanding, and_(
                LeagueStanding.league_id == League.id,
                LeagueStanding.user_id == user_id
            ))
            .where(LeagueMember.user_id == user_id)
            .order_by(League.id)
        )
        
        async with self.get_session() as session:
            result = await session.execute(query)
            return [
                UserLeagueSummary(
                    league_id=row.id,
                    league_name=row.league_name,
                    invite_code=row.invite_code,
                    season_total=float(row.season_total),
                    weekly_score=float(row.weekly_score),
                    member_count=row.member_count
                )
                for row in result.all()
            ]
    
    async def get_user_team(self, user_id: int, league_id: int, episode_number: int) -> List[TeamPick]:
        """A user's roster for one league and episode, with the calculated points for each pick."""
        query = (
            select(
                Roster.queen_name,
                Roster.rank,
                func.coalesce(UserQueenScore.calculated_points, 0.0).label('calculated_points')
            )
            .outerjoin(UserQueenScore, and_(
                UserQueenScore.user_id == Roster.user_id,
                UserQueenScore.league_id == Roster.league_id,
                UserQueenScore.queen_name == Roster.queen_name,
                UserQueenScore.episode_number == Roster.episode_number
            ))
            .where(
                Roster.user_id == user_id,
                Roster.league_id == league_id,
                Roster.episode_number == episode_number
            )
            .order_by(Roster.rank)
        )
        
        async with self.get_session() as session:
            result = await session.execute(query)
            return [
                TeamPick(
                    queen_name=row.queen_name,
                    rank=row.rank,
                    calculated_points=float(row.calculated_points)
                )
                for row in result.all()
            ]

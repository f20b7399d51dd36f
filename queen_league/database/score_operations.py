"""
Score Operations Module

Data access for the episode recalculation engine: roster snapshots, raw
box score aggregation, idempotent per-episode score upserts and the
standings cache rebuild.

All write methods take the caller's session so that persisting and
rebuilding can share a single transaction. Read methods accept an optional
session and manage their own otherwise.
"""

from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

from sqlalchemy import select, delete, func, and_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from queen_league.config import Config
from queen_league.data_models.scoring import EpisodeScoreCandidate, PersistResult, RosterEntry
from queen_league.database.models import (
    Roster, LeagueMember, QueenBoxScore, UserQueenScore, LeagueStanding, Setting
)
from queen_league.utils.logger import setup_logger

logger = setup_logger(__name__)

REBUILD_ALL = "all"

StandingsScope = Union[str, Iterable[Tuple[int, int]]]


class ScoreOperations:
    """
    Collaborator operations backing the recalculation engine.
    
    The per-episode score identity is (user, league, queen, episode); it is
    the only conflict key used for upserts.
    """
    
    def __init__(self, database):
        """Initialize with database instance"""
        self.db = database
        self.logger = logger
    
    @asynccontextmanager
    async def _get_session_context(self, session: Optional[AsyncSession] = None):
        """
        Provides a session context. Uses the provided session if available,
        otherwise creates and manages a new session.
        """
        if session:
            yield session
        else:
            async with self.db.get_session() as new_session:
                yield new_session
    
    def _dialect_insert(self, session: AsyncSession, model):
        """Pick the INSERT construct that supports ON CONFLICT for this backend"""
        if session.bind.dialect.name == 'postgresql':
            return postgresql.insert(model)
        return sqlite.insert(model)
    
    # ============================================================================
    # Reads
    # ============================================================================
    
    async def list_roster_entries(self, episode_number: int,
                                  session: Optional[AsyncSession] = None) -> List[RosterEntry]:
        """
        Snapshot every roster pick for an episode across all leagues.
        
        Picks from users who are no longer members of the league are ignored.
        """
        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(Roster.user_id, Roster.league_id, Roster.episode_number, Roster.queen_name, Roster.rank)
                .join(LeagueMember, and_(
                    LeagueMember.user_id == Roster.user_id,
                    LeagueMember.league_id == Roster.league_id
                ))
                .where(Roster.episode_number == episode_number)
                .order_by(Roster.league_id, Roster.user_id, Roster.rank)
            )
            return [
                RosterEntry(
                    user_id=row.user_id,
                    league_id=row.league_id,
                    episode_number=row.episode_number,
                    queen_name=row.queen_name,
                    rank=row.rank
                )
                for row in result.all()
            ]
    
    async def sum_raw_points(self, episode_number: int,
                             session: Optional[AsyncSession] = None) -> Dict[str, Decimal]:
        """Sum every box score event per queen for an episode. Queens without events are absent."""
        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(QueenBoxScore.queen_name, func.sum(QueenBoxScore.points).label('raw_points'))
                .where(QueenBoxScore.episode_number == episode_number)
                .group_by(QueenBoxScore.queen_name)
            )
            return {
                row.queen_name: Decimal(str(row.raw_points or 0))
                for row in result.all()
            }
    
    async def read_settings(self, session: Optional[AsyncSession] = None) -> Dict[str, str]:
        async with self._get_session_context(session) as s:
            result = await s.execute(select(Setting.key, Setting.value))
            return {row.key: row.value for row in result.all()}
    
    # ============================================================================
    # Per-episode score store
    # ============================================================================
    
    async def upsert_episode_scores(self, session: AsyncSession, episode_number: int,
                                    candidates: List[EpisodeScoreCandidate]) -> PersistResult:
        """
        Replace the stored scores of one episode with the given candidates.
        
        Candidates are upserted on (user, league, queen, episode); rows of this
        episode that the candidates no longer produce (roster changed since the
        last run) are removed. The caller owns the transaction, so the batch is
        all-or-nothing.
        
        Args:
            session: Session of the enclosing write transaction
            episode_number: Episode partition being replaced
            candidates: Weighted scores for every roster pick of the episode
            
        Returns:
            PersistResult with counts and the (user, league) pairs touched
            
        Raises:
            ValueError: If a candidate belongs to another episode or two
                candidates share an identity
        """
        identities = set()
        for candidate in candidates:
            if candidate.episode_number != episode_number:
                raise ValueError(
                    f"Candidate for episode {candidate.episode_number} in batch for episode {episode_number}"
                )
            if candidate.identity in identities:
                raise ValueError(f"Duplicate score identity {candidate.identity}")
            identities.add(candidate.identity)
        
        existing = await session.execute(
            select(UserQueenScore.id, UserQueenScore.user_id, UserQueenScore.league_id, UserQueenScore.queen_name)
            .where(UserQueenScore.episode_number == episode_number)
        )
        stale_ids = []
        affected: Set[Tuple[int, int]] = {c.standings_key for c in candidates}
        for row in existing.all():
            if (row.user_id, row.league_id, row.queen_name, episode_number) not in identities:
                stale_ids.append(row.id)
                affected.add((row.user_id, row.league_id))
        
        if candidates:
            stmt = self._dialect_insert(session, UserQueenScore).values([
                {
                    'user_id': c.user_id,
                    'league_id': c.league_id,
                    'queen_name': c.queen_name,
                    'episode_number': c.episode_number,
                    'rank': c.rank,
                    'calculated_points': float(c.calculated_points),
                }
                for c in candidates
            ])
            stmt = stmt.on_conflict_do_update(
                index_elements=['user_id', 'league_id', 'queen_name', 'episode_number'],
                set_={
                    'rank': stmt.excluded.rank,
                    'calculated_points': stmt.excluded.calculated_points,
                    'updated_at': func.now(),
                }
            )
            await session.execute(stmt)
        
        if stale_ids:
            await session.execute(delete(UserQueenScore).where(UserQueenScore.id.in_(stale_ids)))
            self.logger.info(f"Removed {len(stale_ids)} stale score rows for episode {episode_number}")
        
        self.logger.debug(f"Upserted {len(candidates)} score rows for episode {episode_number}")
        return PersistResult(
            rows_upserted=len(candidates),
            rows_removed=len(stale_ids),
            affected_pairs=frozenset(affected)
        )
    
    # ============================================================================
    # Standings rebuild
    # ============================================================================
    
    @staticmethod
    def _round_total(total) -> float:
        return float(Decimal(str(total or 0)).quantize(Config.POINTS_PRECISION))
    
    async def _season_totals(self, session: AsyncSession,
                             pairs: Optional[Set[Tuple[int, int]]] = None) -> Dict[Tuple[int, int], float]:
        query = (
            select(
                UserQueenScore.user_id,
                UserQueenScore.league_id,
                func.sum(UserQueenScore.calculated_points).label('total_score')
            )
            .group_by(UserQueenScore.user_id, UserQueenScore.league_id)
        )
        if pairs is not None:
            # Coarse filter in SQL, exact pair filter below
            query = query.where(
                UserQueenScore.user_id.in_(sorted({user_id for user_id, _ in pairs})),
                UserQueenScore.league_id.in_(sorted({league_id for _, league_id in pairs}))
            )
        result = await session.execute(query)
        totals = {}
        for row in result.all():
            key = (row.user_id, row.league_id)
            if pairs is None or key in pairs:
                totals[key] = self._round_total(row.total_score)
        return totals
    
    async def rebuild_standings(self, session: AsyncSession, scope: StandingsScope = REBUILD_ALL) -> int:
        """
        Recompute season totals from the per-episode scores.
        
        With scope "all" the whole cache is replaced; otherwise only the given
        (user, league) pairs are recomputed and pairs with no remaining scores
        are dropped. Runs inside the caller's transaction, so readers see the
        old cache until commit.
        
        Returns:
            Number of standings rows written
        """
        if scope == REBUILD_ALL:
            totals = await self._season_totals(session)
            await session.execute(delete(LeagueStanding))
            session.add_all([
                LeagueStanding(user_id=user_id, league_id=league_id, total_score=total)
                for (user_id, league_id), total in sorted(totals.items())
            ])
            await session.flush()
            self.logger.info(f"Rebuilt full standings cache with {len(totals)} rows")
            return len(totals)
        
        pairs = set(scope)
        if not pairs:
            return 0
        
        totals = await self._season_totals(session, pairs)
        if totals:
            stmt = self._dialect_insert(session, LeagueStanding).values([
                {'user_id': user_id, 'league_id': league_id, 'total_score': total}
                for (user_id, league_id), total in sorted(totals.items())
            ])
            stmt = stmt.on_conflict_do_update(
                index_elements=['league_id', 'user_id'],
                set_={'total_score': stmt.excluded.total_score, 'updated_at': func.now()}
            )
            await session.execute(stmt)
        
        for user_id, league_id in sorted(pairs - set(totals)):
            await session.execute(
                delete(LeagueStanding).where(
                    LeagueStanding.user_id == user_id,
                    LeagueStanding.league_id == league_id
                )
            )
        
        self.logger.info(f"Rebuilt standings for {len(pairs)} (user, league) pairs")
        return len(totals)

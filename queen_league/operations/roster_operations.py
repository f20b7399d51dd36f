"""
Roster Operations Module

Business logic for the inputs of the scoring engine: users' ranked roster
picks and raw queen box scores.

Key functionality:
- submit_roster(): validated, all-or-nothing replacement of a user's picks
  for one league and episode
- record_box_score(): append a raw scoring event for a queen
- Queen names are normalized at this boundary so one queen never has two
  spellings in the store
"""

from typing import List, Mapping, Optional

from sqlalchemy import select, delete, union
from sqlalchemy.ext.asyncio import AsyncSession

from queen_league.config import Config
from queen_league.database.models import Roster, LeagueMember, QueenBoxScore
from queen_league.utils.logger import setup_logger
from queen_league.utils.queen_names import normalize_queen_name, queen_identity
from queen_league.utils.scoring_exceptions import RosterValidationError

logger = setup_logger(__name__)


class RosterOperations:
    """Roster and box score writes feeding the recalculation engine."""
    
    def __init__(self, database):
        """Initialize with database instance"""
        self.db = database
        self.logger = logger
    
    async def resolve_queen_name(self, session: AsyncSession, raw_name) -> str:
        """
        Normalize a queen name and map case variants to the spelling already on file.
        
        Raises:
            InvalidQueenNameError: If the name is empty after normalization
        """
        name = normalize_queen_name(raw_name)
        identity = queen_identity(name)
        # Compared with casefold() here; SQL lower() only folds ASCII on SQLite
        known = union(select(Roster.queen_name), select(QueenBoxScore.queen_name)).subquery()
        result = await session.execute(select(known.c.queen_name).order_by(known.c.queen_name))
        for existing in result.scalars().all():
            if queen_identity(existing) == identity:
                return existing
        return name
    
    async def submit_roster(self, user_id: int, league_id: int, episode_number: int,
                            picks: Mapping[int, str]) -> List[Roster]:
        """
        Replace a user's roster for one league and episode.
        
        Previous picks for (user, league, episode) are deleted and the new
        ones inserted in one transaction. A recalculation already in flight
        keeps using its own snapshot.
        
        Args:
            user_id: Submitting user
            league_id: League the roster belongs to
            episode_number: Episode the picks apply to
            picks: rank -> queen name
            
        Returns:
            The new roster rows ordered by rank
            
        Raises:
            RosterValidationError: If the user is not a member, a rank is out of
                range, or a queen is picked twice
            InvalidQueenNameError: If a queen name is empty
        """
        if episode_number < 1:
            raise RosterValidationError("Episode number must be positive.")
        if not picks:
            raise RosterValidationError("A roster needs at least one queen.")
        for rank in picks:
            if not isinstance(rank, int) or isinstance(rank, bool) or not 1 <= rank <= Config.ROSTER_MAX_RANK:
                raise RosterValidationError(f"Rank must be between 1 and {Config.ROSTER_MAX_RANK}.")
        
        async with self.db.transaction() as session:
            membership = await session.execute(
                select(LeagueMember.id).where(
                    LeagueMember.league_id == league_id,
                    LeagueMember.user_id == user_id
                )
            )
            if membership.scalar_one_or_none() is None:
                raise RosterValidationError("You are not a member of this league.")
            
            resolved = {}
            seen = set()
            for rank in sorted(picks):
                name = await self.resolve_queen_name(session, picks[rank])
                identity = queen_identity(name)
                if identity in seen:
                    raise RosterValidationError(f"{name} is picked more than once.")
                seen.add(identity)
                resolved[rank] = name
            
            await session.execute(
                delete(Roster).where(
                    Roster.user_id == user_id,
                    Roster.league_id == league_id,
                    Roster.episode_number == episode_number
                )
            )
            rows = [
                Roster(
                    user_id=user_id,
                    league_id=league_id,
                    episode_number=episode_number,
                    queen_name=name,
                    rank=rank
                )
                for rank, name in resolved.items()
            ]
            session.add_all(rows)
        
        self.logger.info(
            f"User {user_id} submitted {len(rows)} picks for league {league_id}, episode {episode_number}"
        )
        return rows
    
    async def record_box_score(self, queen_name: str, episode_number: int, points: float,
                               description: Optional[str] = None) -> QueenBoxScore:
        """Append a raw scoring event; events for the same queen and episode are summed at recalculation."""
        if episode_number < 1:
            raise ValueError("episode_number must be a positive integer")
        
        async with self.db.transaction() as session:
            name = await self.resolve_queen_name(session, queen_name)
            box_score = QueenBoxScore(
                queen_name=name,
                episode_number=episode_number,
                points=float(points),
                description=description
            )
            session.add(box_score)
        
        self.logger.debug(f"Recorded {points} points for {name} in episode {episode_number}")
        return box_score
    
    async def delete_box_score(self, box_score_id: int) -> bool:
        """Remove a mistaken scoring event. Returns False if it does not exist."""
        async with self.db.transaction() as session:
            box_score = await session.get(QueenBoxScore, box_score_id)
            if not box_score:
                return False
            await session.delete(box_score)
        self.logger.info(f"Deleted box score {box_score_id}")
        return True

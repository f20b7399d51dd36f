"""
Episode Recalculation Service

Converts raw per-episode queen points into league-specific, rank-weighted
user scores and republishes season standings.

One run per call:
    IDLE -> RESOLVING_CONFIG -> AGGREGATING -> CALCULATING
         -> PERSISTING -> REBUILDING -> DONE
with FAILED reachable from any step.

Key Features:
- Per-episode advisory lock (Redis or in-process); a second run for the same
  episode is rejected, not queued
- Roster and box score snapshot taken once, before any write
- Score upsert and standings rebuild committed in one transaction, so readers
  see either the previous or the new state
- Incremental (affected pairs) or full standings rebuild; the write phase is
  serialized globally while snapshots and calculation may overlap
"""

import json
import logging
import time
from typing import Callable, Dict, List, Mapping, Optional, Tuple
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from queen_league.config import Config
from queen_league.data_models.scoring import (
    RecalculationState, RunResult, RunStatus, RosterEntry, ScoringConfig
)
from queen_league.database.models import AuditLog
from queen_league.database.score_operations import ScoreOperations, REBUILD_ALL
from queen_league.services.base import BaseService
from queen_league.utils.episode_lock import EpisodeLockManager, episode_lock_name, REBUILD_LOCK_NAME
from queen_league.utils.scoring_exceptions import (
    AggregationError, CalculationError, ConcurrencyError, PersistenceError, RebuildError, ScoringException
)
from queen_league.utils.weighted_scoring import MultiplierResolver, WeightedScoreCalculator

logger = logging.getLogger(__name__)


class _RunTracker:
    """Tracks the current state of one run and logs each transition."""
    
    def __init__(self, episode_number: int):
        self.episode_number = episode_number
        self.state = RecalculationState.IDLE
    
    def advance(self, state: RecalculationState):
        logger.info(f"Episode {self.episode_number}: {self.state.value} -> {state.value}")
        self.state = state


class RecalculationService(BaseService):
    """Orchestrates score recalculation for one episode at a time."""
    
    def __init__(self, database, lock_manager: Optional[EpisodeLockManager] = None,
                 rebuild_strategy: Optional[str] = None,
                 on_calculation_start: Optional[Callable] = None,
                 on_calculation_complete: Optional[Callable] = None):
        super().__init__(database.session_factory)
        self.db = database
        self.score_ops = ScoreOperations(database)
        self.lock_manager = lock_manager or EpisodeLockManager()
        self.rebuild_strategy = (rebuild_strategy or Config.STANDINGS_REBUILD_STRATEGY).lower()
        if self.rebuild_strategy not in ('incremental', 'full'):
            raise ValueError(f"Unknown standings rebuild strategy: {self.rebuild_strategy}")
        # Optional monitoring callbacks
        self.on_calculation_start = on_calculation_start
        self.on_calculation_complete = on_calculation_complete
    
    async def recalculate(self, episode_number: int,
                          multiplier_override: Optional[Mapping[int, object]] = None,
                          actor_id: Optional[int] = None) -> RunResult:
        """
        Recalculate every user's weighted score for an episode and refresh standings.
        
        Safe to re-run for the same episode after data corrections: the
        episode's stored scores are replaced, never duplicated.
        
        Args:
            episode_number: Episode to recalculate
            multiplier_override: Optional rank -> multiplier table used instead
                of the stored settings (invalid values fall back to defaults)
            actor_id: Operator id recorded in the audit log
            
        Returns:
            RunResult with a terminal status; errors are reported, not raised
        """
        if not isinstance(episode_number, int) or isinstance(episode_number, bool) or episode_number < 1:
            raise ValueError("episode_number must be a positive integer")
        
        start_time = time.monotonic()
        tracker = _RunTracker(episode_number)
        try:
            async with self.lock_manager.hold(episode_lock_name(episode_number)):
                self._notify_start(episode_number)
                result = await self._run(tracker, multiplier_override, actor_id, start_time)
        except ConcurrencyError as e:
            logger.warning(f"Recalculation for episode {episode_number} rejected: {e}")
            return RunResult(
                episode_number=episode_number,
                status=RunStatus.REJECTED,
                state=tracker.state,
                error=str(e),
                duration_seconds=time.monotonic() - start_time
            )
        
        self._notify_complete(episode_number, result.duration_seconds, result.succeeded)
        return result
    
    async def _run(self, tracker: _RunTracker, multiplier_override, actor_id, start_time) -> RunResult:
        episode_number = tracker.episode_number
        config = None
        warnings: List[str] = []
        try:
            tracker.advance(RecalculationState.RESOLVING_CONFIG)
            config, warnings = await self._resolve_config(episode_number, multiplier_override)
            
            tracker.advance(RecalculationState.AGGREGATING)
            roster_entries, raw_points = await self._snapshot(episode_number)
            
            tracker.advance(RecalculationState.CALCULATING)
            try:
                candidates = WeightedScoreCalculator.calculate_all(roster_entries, raw_points, config)
            except ArithmeticError as e:
                raise CalculationError(episode_number, repr(e)) from e
            logger.info(
                f"Episode {episode_number}: {len(candidates)} roster picks scored "
                f"({len(raw_points)} queens with box scores)"
            )
            
            persist_result, standings_updated = await self._persist_and_rebuild(
                tracker, candidates, config, actor_id
            )
        except ScoringException as e:
            failed_step = tracker.state
            tracker.advance(RecalculationState.FAILED)
            logger.error(f"Recalculation for episode {episode_number} failed during {failed_step.value}: {e}",
                         exc_info=True)
            return RunResult(
                episode_number=episode_number,
                status=RunStatus.FAILED,
                state=RecalculationState.FAILED,
                failed_step=failed_step,
                multipliers=dict(config.multipliers) if config else {},
                config_warnings=warnings,
                error=str(e),
                duration_seconds=time.monotonic() - start_time
            )
        
        tracker.advance(RecalculationState.DONE)
        return RunResult(
            episode_number=episode_number,
            status=RunStatus.COMPLETED,
            state=RecalculationState.DONE,
            rows_updated=persist_result.rows_upserted,
            rows_removed=persist_result.rows_removed,
            standings_updated=standings_updated,
            multipliers=dict(config.multipliers),
            config_warnings=warnings,
            duration_seconds=time.monotonic() - start_time
        )
    
    async def _resolve_config(self, episode_number: int,
                              multiplier_override) -> Tuple[ScoringConfig, List[str]]:
        if multiplier_override:
            settings = MultiplierResolver.override_to_settings(multiplier_override)
        else:
            try:
                settings = await self.execute_with_retry(self.score_ops.read_settings)
            except SQLAlchemyError as e:
                raise AggregationError(episode_number, f"settings read failed: {e}") from e
        
        config, issues = MultiplierResolver.resolve(settings)
        for issue in issues:
            logger.warning(str(issue))
        return config, [str(issue) for issue in issues]
    
    async def _snapshot(self, episode_number: int) -> Tuple[List[RosterEntry], Dict[str, Decimal]]:
        """Read rosters and raw points in one session; later roster edits apply to the next run."""
        async def read_snapshot():
            async with self.db.get_session() as session:
                roster_entries = await self.score_ops.list_roster_entries(episode_number, session=session)
                raw_points = await self.score_ops.sum_raw_points(episode_number, session=session)
                return roster_entries, raw_points
        
        try:
            return await self.execute_with_retry(read_snapshot)
        except SQLAlchemyError as e:
            raise AggregationError(episode_number, str(e)) from e
    
    async def _persist_and_rebuild(self, tracker: _RunTracker, candidates, config: ScoringConfig, actor_id):
        episode_number = tracker.episode_number
        full_rebuild = self.rebuild_strategy == 'full'
        # Persist + rebuild run one at a time across all episodes
        rebuild_guard = self.lock_manager.wait_for(REBUILD_LOCK_NAME)
        
        tracker.advance(RecalculationState.PERSISTING)
        try:
            async with rebuild_guard:
                async with self.db.transaction() as session:
                    persist_result = await self.score_ops.upsert_episode_scores(
                        session, episode_number, candidates
                    )
                    
                    tracker.advance(RecalculationState.REBUILDING)
                    scope = REBUILD_ALL if full_rebuild else persist_result.affected_pairs
                    standings_updated = await self.score_ops.rebuild_standings(session, scope)
                    
                    session.add(AuditLog(
                        user_id=actor_id,
                        action='recalculate',
                        details=json.dumps({
                            'episode_number': episode_number,
                            'rows_updated': persist_result.rows_upserted,
                            'rows_removed': persist_result.rows_removed,
                            'standings_updated': standings_updated,
                            'strategy': self.rebuild_strategy,
                            'multipliers': {str(rank): value for rank, value in config.multipliers.items()}
                        })
                    ))
        except (SQLAlchemyError, ValueError) as e:
            if tracker.state == RecalculationState.REBUILDING:
                scope_name = 'full' if full_rebuild else 'incremental'
                raise RebuildError(scope_name, str(e)) from e
            raise PersistenceError(episode_number, str(e)) from e
        
        return persist_result, standings_updated
    
    def _notify_start(self, episode_number: int):
        if self.on_calculation_start:
            try:
                self.on_calculation_start(episode_number)
            except Exception as e:
                logger.warning(f"Monitoring callback on_calculation_start failed: {e}")
    
    def _notify_complete(self, episode_number: int, duration: float, success: bool):
        if self.on_calculation_complete:
            try:
                self.on_calculation_complete(episode_number, duration, success)
            except Exception as e:
                logger.warning(f"Monitoring callback on_calculation_complete failed: {e}")

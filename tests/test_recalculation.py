import asyncio

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from conftest import make_database, seed_users_and_leagues, seed_rosters, seed_box_scores
from queen_league.data_models.scoring import RecalculationState, RunStatus
from queen_league.database.models import AuditLog, LeagueStanding, UserQueenScore
from queen_league.operations.roster_operations import RosterOperations
from queen_league.services.recalculation import RecalculationService
from queen_league.services.settings import SettingsService
from queen_league.services.standings import StandingsService
from queen_league.utils.episode_lock import EpisodeLockManager


async def build_season(db_url):
    """
    alice (league 10): ep1 Bianca #1, ep2 Jinkx #1
    bob (league 20):   ep1 Bianca #1, ep2 Bianca #5
    Box scores: Bianca ep1 3 + 4, Jinkx ep2 4, Bianca ep2 2
    Rank 1 multiplier 2.5
    """
    db = await make_database(db_url)
    await seed_users_and_leagues(
        db,
        users={1: "alice", 2: "bob"},
        leagues={10: ("Werk Room", 1), 20: ("Library", 2)},
        memberships=[(10, 1), (20, 2)],
    )
    await seed_rosters(db, [
        (1, 10, 1, "Bianca", 1),
        (2, 20, 1, "Bianca", 1),
        (1, 10, 2, "Jinkx", 1),
        (2, 20, 2, "Bianca", 5),
    ])
    await seed_box_scores(db, [("Bianca", 1, 3), ("Bianca", 1, 4), ("Jinkx", 2, 4), ("Bianca", 2, 2)])
    settings = SettingsService(db.session_factory)
    await settings.set('multiplier_rank_1', '2.5')
    return db


async def snapshot(db):
    async with db.get_session() as session:
        scores = await session.execute(
            select(UserQueenScore.user_id, UserQueenScore.league_id, UserQueenScore.queen_name,
                   UserQueenScore.episode_number, UserQueenScore.rank, UserQueenScore.calculated_points)
            .order_by(UserQueenScore.user_id, UserQueenScore.league_id,
                      UserQueenScore.episode_number, UserQueenScore.queen_name)
        )
        standings = await session.execute(
            select(LeagueStanding.user_id, LeagueStanding.league_id, LeagueStanding.total_score)
            .order_by(LeagueStanding.user_id, LeagueStanding.league_id)
        )
        return [tuple(row) for row in scores.all()], [tuple(row) for row in standings.all()]


def test_recalculate_scores_and_season_totals(db_url):
    async def scenario():
        db = await build_season(db_url)
        service = RecalculationService(db)
        first = await service.recalculate(1)
        second = await service.recalculate(2)
        state = await snapshot(db)
        await db.close()
        return first, second, state
    
    first, second, (scores, standings) = asyncio.run(scenario())
    assert first.status == RunStatus.COMPLETED
    assert first.state == RecalculationState.DONE
    assert first.rows_updated == 2
    assert first.multipliers[1] == 2.5
    assert second.succeeded
    assert scores == [
        (1, 10, "Bianca", 1, 1, 17.5),
        (1, 10, "Jinkx", 2, 1, 10.0),
        (2, 20, "Bianca", 1, 1, 17.5),
        (2, 20, "Bianca", 2, 5, 2.0),  # unmapped rank falls back to 1.0
    ]
    assert standings == [(1, 10, 27.5), (2, 20, 19.5)]


def test_repeated_runs_leave_identical_state(db_url):
    async def scenario():
        db = await build_season(db_url)
        service = RecalculationService(db)
        await service.recalculate(1)
        await service.recalculate(2)
        once = await snapshot(db)
        for _ in range(3):
            result = await service.recalculate(2)
            assert result.succeeded
        again = await snapshot(db)
        await db.close()
        return once, again
    
    once, again = asyncio.run(scenario())
    assert once == again


@pytest.mark.parametrize("strategy", ["incremental", "full"])
def test_rebuild_strategies_agree(db_url, strategy):
    async def scenario():
        db = await build_season(db_url)
        service = RecalculationService(db, rebuild_strategy=strategy)
        await service.recalculate(1)
        result = await service.recalculate(2)
        state = await snapshot(db)
        await db.close()
        return result, state
    
    result, (_, standings) = asyncio.run(scenario())
    assert result.succeeded
    assert standings == [(1, 10, 27.5), (2, 20, 19.5)]


def test_multiplier_override_is_used_instead_of_settings(db_url):
    async def scenario():
        db = await build_season(db_url)
        result = await RecalculationService(db).recalculate(1, multiplier_override={1: 3, 2: "oops"})
        state = await snapshot(db)
        await db.close()
        return result, state
    
    result, (scores, _) = asyncio.run(scenario())
    assert result.multipliers == {1: 3.0, 2: 1.5, 3: 1.0, 4: 0.5}
    assert len(result.config_warnings) == 1
    assert scores[0][-1] == 21.0


def test_invalid_multiplier_setting_falls_back_with_warning(db_url):
    async def scenario():
        db = await build_season(db_url)
        await SettingsService(db.session_factory).set('multiplier_rank_1', 'two')
        result = await RecalculationService(db).recalculate(1)
        await db.close()
        return result
    
    result = asyncio.run(scenario())
    assert result.succeeded
    assert result.multipliers[1] == 2.0
    assert "multiplier_rank_1" in result.config_warnings[0]


def test_roster_resubmission_replaces_scores_on_rerun(db_url):
    async def scenario():
        db = await build_season(db_url)
        service = RecalculationService(db)
        await service.recalculate(1)
        await RosterOperations(db).submit_roster(1, 10, 1, {1: "  jinkx "})
        result = await service.recalculate(1)
        state = await snapshot(db)
        await db.close()
        return result, state
    
    result, (scores, standings) = asyncio.run(scenario())
    assert result.rows_updated == 2
    assert result.rows_removed == 1
    assert (1, 10, "Jinkx", 1, 1, 0.0) in scores
    assert not any(s[0] == 1 and s[2] == "Bianca" for s in scores)
    assert standings == [(1, 10, 0.0), (2, 20, 17.5)]


def test_concurrent_runs_for_same_episode_reject_one(db_url):
    async def scenario():
        db = await build_season(db_url)
        service = RecalculationService(db, lock_manager=EpisodeLockManager())
        results = await asyncio.gather(service.recalculate(1), service.recalculate(1))
        # The lock is released afterwards
        follow_up = await service.recalculate(1)
        await db.close()
        return results, follow_up
    
    results, follow_up = asyncio.run(scenario())
    statuses = sorted(r.status.value for r in results)
    assert statuses == ["completed", "rejected"]
    rejected = next(r for r in results if r.status == RunStatus.REJECTED)
    assert rejected.rows_updated == 0
    assert rejected.state == RecalculationState.IDLE
    assert follow_up.succeeded


def test_runs_for_different_episodes_both_complete(db_url):
    async def scenario():
        db = await build_season(db_url)
        service = RecalculationService(db)
        results = await asyncio.gather(service.recalculate(1), service.recalculate(2))
        state = await snapshot(db)
        await db.close()
        return results, state
    
    results, (_, standings) = asyncio.run(scenario())
    assert all(r.succeeded for r in results)
    assert standings == [(1, 10, 27.5), (2, 20, 19.5)]


def test_persistence_failure_leaves_previous_state(db_url):
    async def scenario():
        db = await build_season(db_url)
        service = RecalculationService(db)
        await service.recalculate(1)
        before = await snapshot(db)
        
        await seed_box_scores(db, [("Bianca", 1, 10)])
        original = service.score_ops.upsert_episode_scores
        
        async def failing_upsert(session, episode_number, candidates):
            await original(session, episode_number, candidates)
            raise SQLAlchemyError("disk full")
        
        service.score_ops.upsert_episode_scores = failing_upsert
        result = await service.recalculate(1)
        after = await snapshot(db)
        await db.close()
        return result, before, after
    
    result, before, after = asyncio.run(scenario())
    assert result.status == RunStatus.FAILED
    assert result.state == RecalculationState.FAILED
    assert result.failed_step == RecalculationState.PERSISTING
    assert "disk full" in result.error
    assert before == after


def test_rebuild_failure_rolls_back_scores_too(db_url):
    async def scenario():
        db = await build_season(db_url)
        service = RecalculationService(db)
        await service.recalculate(1)
        before = await snapshot(db)
        
        await seed_box_scores(db, [("Bianca", 1, 10)])
        
        async def failing_rebuild(session, scope):
            raise SQLAlchemyError("constraint violated")
        
        service.score_ops.rebuild_standings = failing_rebuild
        result = await service.recalculate(1)
        after = await snapshot(db)
        await db.close()
        return result, before, after
    
    result, before, after = asyncio.run(scenario())
    assert result.failed_step == RecalculationState.REBUILDING
    assert before == after


def test_aggregation_failure_writes_nothing(db_url):
    async def scenario():
        db = await build_season(db_url)
        service = RecalculationService(db)
        
        async def unreachable(episode_number, session=None):
            raise SQLAlchemyError("connection refused")
        
        service.score_ops.list_roster_entries = unreachable
        result = await service.recalculate(1)
        state = await snapshot(db)
        async with db.get_session() as session:
            audits = await session.execute(select(AuditLog).where(AuditLog.action == 'recalculate'))
            audit_count = len(audits.scalars().all())
        await db.close()
        return result, state, audit_count
    
    result, (scores, standings), audit_count = asyncio.run(scenario())
    assert result.failed_step == RecalculationState.AGGREGATING
    assert scores == [] and standings == []
    assert audit_count == 0


def test_readers_see_previous_standings_during_rebuild(db_url):
    async def scenario():
        db = await build_season(db_url)
        service = RecalculationService(db, rebuild_strategy="full")
        standings_service = StandingsService(db.session_factory)
        await service.recalculate(1)
        before = await standings_service.read_standings()
        
        await seed_box_scores(db, [("Bianca", 1, 10)])
        original = service.score_ops.rebuild_standings
        observed = []
        
        async def observed_rebuild(session, scope):
            written = await original(session, scope)
            # Another connection reads while the rebuild is uncommitted
            observed.append(await standings_service.read_standings())
            return written
        
        service.score_ops.rebuild_standings = observed_rebuild
        result = await service.recalculate(1)
        after = await standings_service.read_standings()
        await db.close()
        return result, before, observed, after
    
    result, before, observed, after = asyncio.run(scenario())
    assert result.succeeded
    assert observed == [before]
    assert [e.total_score for e in before] == [17.5, 17.5]
    assert [e.total_score for e in after] == [42.5, 42.5]


def test_monitoring_callbacks_and_audit_row(db_url):
    async def scenario():
        db = await build_season(db_url)
        events = []
        
        def broken_callback(episode_number):
            raise RuntimeError("metrics down")
        
        service = RecalculationService(
            db,
            on_calculation_start=broken_callback,
            on_calculation_complete=lambda ep, duration, success: events.append((ep, success)),
        )
        result = await service.recalculate(1, actor_id=42)
        async with db.get_session() as session:
            audits = await session.execute(select(AuditLog).where(AuditLog.action == 'recalculate'))
            audit = audits.scalar_one()
        await db.close()
        return result, events, audit
    
    result, events, audit = asyncio.run(scenario())
    assert result.succeeded
    assert events == [(1, True)]
    assert audit.user_id == 42
    assert '"episode_number": 1' in audit.details


def test_invalid_episode_number_is_rejected_up_front(db_url):
    async def scenario():
        db = await make_database(db_url)
        service = RecalculationService(db)
        try:
            with pytest.raises(ValueError):
                await service.recalculate(0)
        finally:
            await db.close()
    
    asyncio.run(scenario())


def test_oversized_multiplier_setting_falls_back_instead_of_crashing(db_url):
    async def scenario():
        db = await build_season(db_url)
        await seed_box_scores(db, [("Bianca", 1, 100)])
        await SettingsService(db.session_factory).set('multiplier_rank_1', '1e27')
        result = await RecalculationService(db).recalculate(1)
        state = await snapshot(db)
        await db.close()
        return result, state
    
    result, (scores, _) = asyncio.run(scenario())
    assert result.succeeded
    assert result.multipliers[1] == 2.0
    assert "multiplier_rank_1" in result.config_warnings[0]
    assert scores[0][-1] == 214.0


def test_calculation_overflow_fails_the_run(db_url):
    async def scenario():
        db = await build_season(db_url)
        await seed_box_scores(db, [("Bianca", 1, 1e30)])
        events = []
        service = RecalculationService(
            db, on_calculation_complete=lambda ep, duration, success: events.append((ep, success))
        )
        result = await service.recalculate(1)
        state = await snapshot(db)
        await db.close()
        return result, events, state
    
    result, events, (scores, standings) = asyncio.run(scenario())
    assert result.status == RunStatus.FAILED
    assert result.failed_step == RecalculationState.CALCULATING
    assert "Score calculation failed" in result.error
    assert events == [(1, False)]
    assert scores == [] and standings == []


def test_override_for_unknown_rank_is_warned(db_url):
    async def scenario():
        db = await build_season(db_url)
        result = await RecalculationService(db).recalculate(1, multiplier_override={5: 3.0})
        await db.close()
        return result
    
    result = asyncio.run(scenario())
    assert result.succeeded
    assert result.multipliers == {1: 2.0, 2: 1.5, 3: 1.0, 4: 0.5}
    assert len(result.config_warnings) == 1
    assert "multiplier_rank_5" in result.config_warnings[0]


def test_roster_change_during_run_applies_to_next_run(db_url):
    async def scenario():
        db = await build_season(db_url)
        service = RecalculationService(db)
        rosters = RosterOperations(db)
        original = service.score_ops.upsert_episode_scores
        
        async def upsert_after_resubmission(session, episode_number, candidates):
            # Lands after the snapshot, before this run writes
            await rosters.submit_roster(1, 10, 1, {1: "Jinkx"})
            return await original(session, episode_number, candidates)
        
        service.score_ops.upsert_episode_scores = upsert_after_resubmission
        in_flight = await service.recalculate(1)
        during = await snapshot(db)
        
        service.score_ops.upsert_episode_scores = original
        next_run = await service.recalculate(1)
        after = await snapshot(db)
        await db.close()
        return in_flight, during, next_run, after
    
    in_flight, (during_scores, _), next_run, (after_scores, after_standings) = asyncio.run(scenario())
    assert in_flight.succeeded and next_run.succeeded
    assert (1, 10, "Bianca", 1, 1, 17.5) in during_scores
    assert not any(s[0] == 1 and s[2] == "Jinkx" for s in during_scores)
    assert (1, 10, "Jinkx", 1, 1, 0.0) in after_scores
    assert not any(s[0] == 1 and s[2] == "Bianca" for s in after_scores)
    assert after_standings == [(1, 10, 0.0), (2, 20, 17.5)]

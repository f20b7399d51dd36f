import asyncio

import pytest
from sqlalchemy import select

from conftest import make_database, seed_users_and_leagues
from queen_league.database.models import Roster, QueenBoxScore
from queen_league.operations.roster_operations import RosterOperations
from queen_league.utils.queen_names import normalize_queen_name, queen_identity
from queen_league.utils.scoring_exceptions import InvalidQueenNameError, RosterValidationError


async def setup(db_url):
    db = await make_database(db_url)
    await seed_users_and_leagues(
        db,
        users={1: "alice", 2: "bob"},
        leagues={10: ("Werk Room", 1)},
        memberships=[(10, 1)],
    )
    return db


async def roster_rows(db, user_id=1, league_id=10, episode=1):
    async with db.get_session() as session:
        result = await session.execute(
            select(Roster.rank, Roster.queen_name)
            .where(Roster.user_id == user_id, Roster.league_id == league_id, Roster.episode_number == episode)
            .order_by(Roster.rank)
        )
        return [tuple(row) for row in result.all()]


def test_normalize_queen_name():
    assert normalize_queen_name("  Bianca   Del  Rio ") == "Bianca Del Rio"
    with pytest.raises(InvalidQueenNameError):
        normalize_queen_name("   ")
    with pytest.raises(InvalidQueenNameError):
        normalize_queen_name(None)


def test_submit_roster_replaces_previous_picks(db_url):
    async def scenario():
        db = await setup(db_url)
        ops = RosterOperations(db)
        await ops.submit_roster(1, 10, 1, {1: "Bianca", 2: "Jinkx", 3: "Trixie"})
        await ops.submit_roster(1, 10, 1, {1: "Jinkx", 2: "Katya"})
        await ops.submit_roster(1, 10, 2, {1: "Bianca"})
        rows = await roster_rows(db)
        other_episode = await roster_rows(db, episode=2)
        await db.close()
        return rows, other_episode
    
    rows, other_episode = asyncio.run(scenario())
    assert rows == [(1, "Jinkx"), (2, "Katya")]
    assert other_episode == [(1, "Bianca")]


def test_case_variants_map_to_known_spelling(db_url):
    async def scenario():
        db = await setup(db_url)
        ops = RosterOperations(db)
        await ops.record_box_score("Bianca Del Rio", 1, 5)
        await ops.record_box_score("  bianca  del rio", 1, 2)
        await ops.submit_roster(1, 10, 1, {1: "BIANCA DEL RIO"})
        rows = await roster_rows(db)
        async with db.get_session() as session:
            names = await session.execute(select(QueenBoxScore.queen_name).distinct())
            box_names = list(names.scalars().all())
        await db.close()
        return rows, box_names
    
    rows, box_names = asyncio.run(scenario())
    assert rows == [(1, "Bianca Del Rio")]
    assert box_names == ["Bianca Del Rio"]


@pytest.mark.parametrize("picks, message", [
    ({}, "at least one"),
    ({0: "Bianca"}, "between 1 and 4"),
    ({5: "Bianca"}, "between 1 and 4"),
    ({1: "Bianca", 2: "bianca"}, "more than once"),
])
def test_invalid_rosters_are_rejected(db_url, picks, message):
    async def scenario():
        db = await setup(db_url)
        ops = RosterOperations(db)
        await ops.submit_roster(1, 10, 1, {1: "Jinkx"})
        try:
            with pytest.raises(RosterValidationError) as excinfo:
                await ops.submit_roster(1, 10, 1, picks)
            rows = await roster_rows(db)
        finally:
            await db.close()
        return excinfo.value, rows
    
    error, rows = asyncio.run(scenario())
    assert message in str(error)
    # The previous roster survives a rejected submission
    assert rows == [(1, "Jinkx")]


def test_non_member_cannot_submit(db_url):
    async def scenario():
        db = await setup(db_url)
        try:
            with pytest.raises(RosterValidationError):
                await RosterOperations(db).submit_roster(2, 10, 1, {1: "Bianca"})
        finally:
            await db.close()
    
    asyncio.run(scenario())


def test_delete_box_score(db_url):
    async def scenario():
        db = await setup(db_url)
        ops = RosterOperations(db)
        box_score = await ops.record_box_score("Jinkx", 1, 3, description="Maxi challenge win")
        deleted = await ops.delete_box_score(box_score.id)
        missing = await ops.delete_box_score(box_score.id)
        await db.close()
        return deleted, missing
    
    assert asyncio.run(scenario()) == (True, False)


def test_non_ascii_case_variants_share_one_spelling(db_url):
    async def scenario():
        db = await setup(db_url)
        ops = RosterOperations(db)
        await ops.record_box_score("HUGÁCEO CRUJIENTE", 1, 3)
        await ops.record_box_score("Hugáceo Crujiente", 1, 4)
        await ops.submit_roster(1, 10, 1, {1: "hugáceo crujiente"})
        rows = await roster_rows(db)
        async with db.get_session() as session:
            names = await session.execute(select(QueenBoxScore.queen_name).distinct())
            box_names = list(names.scalars().all())
        await db.close()
        return rows, box_names
    
    rows, box_names = asyncio.run(scenario())
    assert box_names == ["HUGÁCEO CRUJIENTE"]
    assert rows == [(1, "HUGÁCEO CRUJIENTE")]


def test_queen_identity_ignores_case_and_unicode_form():
    composed = "Hug\u00e1ceo"
    decomposed = "HUGA\u0301CEO"
    assert queen_identity(composed) == queen_identity(decomposed)
    assert queen_identity("Straße") == queen_identity("STRASSE")

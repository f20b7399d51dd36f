import os
import sys
import tempfile

# Keep test log files out of the working tree
os.environ.setdefault('LOG_DIR', os.path.join(tempfile.gettempdir(), 'queen_league_test_logs'))

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest

from queen_league.database.database import Database
from queen_league.database.models import User, League, LeagueMember, Roster, QueenBoxScore


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'test_queen_league.db'}"


async def make_database(db_url: str) -> Database:
    db = Database(database_url=db_url)
    await db.initialize()
    return db


async def seed_users_and_leagues(db: Database, users, leagues, memberships):
    """
    users: {user_id: username}
    leagues: {league_id: (name, creator_id)}
    memberships: [(league_id, user_id)]
    """
    async with db.transaction() as session:
        for user_id, username in users.items():
            session.add(User(id=user_id, username=username))
        await session.flush()
        for league_id, (name, creator_id) in leagues.items():
            session.add(League(id=league_id, league_name=name, invite_code=f"CODE{league_id:04d}", created_by=creator_id))
        await session.flush()
        for league_id, user_id in memberships:
            session.add(LeagueMember(league_id=league_id, user_id=user_id))


async def seed_rosters(db: Database, picks):
    """picks: [(user_id, league_id, episode, queen_name, rank)]"""
    async with db.transaction() as session:
        for user_id, league_id, episode, queen_name, rank in picks:
            session.add(Roster(user_id=user_id, league_id=league_id, episode_number=episode,
                               queen_name=queen_name, rank=rank))


async def seed_box_scores(db: Database, events):
    """events: [(queen_name, episode, points)]"""
    async with db.transaction() as session:
        for queen_name, episode, points in events:
            session.add(QueenBoxScore(queen_name=queen_name, episode_number=episode, points=points))

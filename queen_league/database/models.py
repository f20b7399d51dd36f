from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text,
    ForeignKey, Float, UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

class User(Base):
    __tablename__ = 'users'
    
    id = Column(Integer, primary_key=True)
    username = Column(String(100), nullable=False, unique=True)
    is_active = Column(Boolean, default=True, nullable=False)  # Inactive users are hidden from leaderboards
    
    # Metadata
    created_at = Column(DateTime, default=func.now())
    
    # Relationships
    memberships = relationship("LeagueMember", back_populates="user", cascade="all, delete-orphan")
    
    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', active={self.is_active})>"

class League(Base):
    __tablename__ = 'leagues'
    
    id = Column(Integer, primary_key=True)
    league_name = Column(String(200), nullable=False)
    invite_code = Column(String(16), nullable=False, unique=True)
    created_by = Column(Integer, ForeignKey('users.id'), nullable=False)
    
    # Metadata
    created_at = Column(DateTime, default=func.now())
    
    # Relationships
    members = relationship("LeagueMember", back_populates="league", cascade="all, delete-orphan")
    
    def __repr__(self):
        return f"<League(id={self.id}, name='{self.league_name}')>"

class LeagueMember(Base):
    __tablename__ = 'league_members'
    
    id = Column(Integer, primary_key=True)
    league_id = Column(Integer, ForeignKey('leagues.id'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    joined_at = Column(DateTime, default=func.now())
    
    # Relationships
    league = relationship("League", back_populates="members")
    user = relationship("User", back_populates="memberships")
    
    __table_args__ = (
        UniqueConstraint('league_id', 'user_id', name='uq_league_member'),
    )
    
    def __repr__(self):
        return f"<LeagueMember(league_id={self.league_id}, user_id={self.user_id})>"

class Roster(Base):
    """
    One pick in a user's per-league, per-episode roster.
    
    A resubmission replaces every row for (user, league, episode).
    """
    __tablename__ = 'rosters'
    
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    league_id = Column(Integer, ForeignKey('leagues.id'), nullable=False)
    episode_number = Column(Integer, nullable=False)
    queen_name = Column(String(100), nullable=False)
    rank = Column(Integer, nullable=False)
    submitted_at = Column(DateTime, default=func.now())
    
    __table_args__ = (
        UniqueConstraint('user_id', 'league_id', 'episode_number', 'rank', name='uq_roster_rank'),
        CheckConstraint('rank >= 1', name='ck_roster_rank_positive'),
        Index('ix_rosters_episode', 'episode_number'),
    )
    
    def __repr__(self):
        return (f"<Roster(user_id={self.user_id}, league_id={self.league_id}, "
                f"episode={self.episode_number}, rank={self.rank}, queen='{self.queen_name}')>")

class QueenBoxScore(Base):
    """
    Raw scoring event for a queen in an episode.
    
    Several rows may exist per (queen, episode); they are summed.
    """
    __tablename__ = 'queen_box_scores'
    
    id = Column(Integer, primary_key=True)
    queen_name = Column(String(100), nullable=False)
    episode_number = Column(Integer, nullable=False)
    points = Column(Float, nullable=False)
    description = Column(String(200), nullable=True)
    recorded_at = Column(DateTime, default=func.now())
    
    __table_args__ = (
        Index('ix_box_scores_episode_queen', 'episode_number', 'queen_name'),
    )
    
    def __repr__(self):
        return f"<QueenBoxScore(queen='{self.queen_name}', episode={self.episode_number}, points={self.points})>"

class UserQueenScore(Base):
    """Weighted per-episode score, derived from Roster x QueenBoxScore x multipliers."""
    __tablename__ = 'user_queen_scores'
    
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    league_id = Column(Integer, ForeignKey('leagues.id'), nullable=False)
    queen_name = Column(String(100), nullable=False)
    episode_number = Column(Integer, nullable=False)
    rank = Column(Integer, nullable=False)
    calculated_points = Column(Float, nullable=False, default=0.0)
    
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
    
    __table_args__ = (
        UniqueConstraint('user_id', 'league_id', 'queen_name', 'episode_number', name='uq_user_queen_score'),
        Index('ix_user_queen_scores_episode', 'episode_number'),
    )
    
    def __repr__(self):
        return (f"<UserQueenScore(user_id={self.user_id}, league_id={self.league_id}, queen='{self.queen_name}', "
                f"episode={self.episode_number}, points={self.calculated_points})>")

class LeagueStanding(Base):
    """Season-to-date total per (user, league). Rebuilt only by the standings rebuilder."""
    __tablename__ = 'league_standings'
    
    id = Column(Integer, primary_key=True)
    league_id = Column(Integer, ForeignKey('leagues.id'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    total_score = Column(Float, nullable=False, default=0.0)
    
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
    
    __table_args__ = (
        UniqueConstraint('league_id', 'user_id', name='uq_league_standing'),
    )
    
    def __repr__(self):
        return f"<LeagueStanding(league_id={self.league_id}, user_id={self.user_id}, total={self.total_score})>"

class Setting(Base):
    __tablename__ = 'settings'
    
    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
    
    def __repr__(self):
        return f"<Setting(key='{self.key}', value='{self.value}')>"

class AuditLog(Base):
    __tablename__ = 'audit_log'
    
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=True)  # Operator id, None for scheduled jobs
    action = Column(String(50), nullable=False)
    details = Column(Text, nullable=True)  # JSON payload
    created_at = Column(DateTime, default=func.now())
    
    def __repr__(self):
        return f"<AuditLog(action='{self.action}', user_id={self.user_id})>"

from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Boolean, Float, Text, DateTime, JSON, ForeignKey, UniqueConstraint,
)
from database import Base


def utcnow():
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"
    id = Column(String(36), primary_key=True)
    email = Column(String, nullable=False, unique=True)
    password_hash = Column(String, nullable=False)
    user_metadata = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    last_sign_in_at = Column(DateTime(timezone=True))


class AuthSession(Base):
    __tablename__ = "auth_sessions"
    token = Column(String, primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)


class Movie(Base):
    __tablename__ = "movies"
    id = Column(Integer, primary_key=True, autoincrement=False)
    title = Column(String, nullable=False)
    overview = Column(Text)
    release_date = Column(String(10))
    poster_path = Column(String)
    backdrop_path = Column(String)
    vote_average = Column(Float, default=0.0)
    vote_count = Column(Integer, default=0)
    runtime = Column(Integer)
    genres = Column(JSON, default=list)
    original_title = Column(String)
    original_language = Column(String(8))
    adult = Column(Boolean, default=False)
    popularity = Column(Float, default=0.0)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class UserWatchlist(Base):
    __tablename__ = "user_watchlists"
    __table_args__ = (UniqueConstraint("user_id", "movie_id", name="uq_user_watchlists_user_movie"),)
    id = Column(Integer, primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    movie_id = Column(Integer, ForeignKey("movies.id"), nullable=False)
    added_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    watched = Column(Boolean, default=False, nullable=False)
    personal_rating = Column(Float)
    personal_notes = Column(Text)


class UserProfile(Base):
    __tablename__ = "user_profiles"
    id = Column(String(36), ForeignKey("users.id"), primary_key=True)
    username = Column(String(30), unique=True)
    display_name = Column(String(50))
    avatar_url = Column(String)
    bio = Column(String(500))
    favorite_genres = Column(JSON)
    location = Column(String(100))
    website = Column(String)
    birth_date = Column(String(10))
    privacy_level = Column(String(10), default="public", nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

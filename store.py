"""Client for the remote account & data store.

Auth (users, sessions, metadata, auth-state notifications) and the movie,
watchlist and profile tables all live behind one async SQLAlchemy session
factory. Database and connection failures surface as RemoteUnavailable;
callers decide how to degrade.
"""
import asyncio
import base64
import hashlib
import hmac
import inspect
import logging
import secrets
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

import models
from config import SESSION_TTL_HOURS
from database import SessionLocal
from entities import Movie, UserSession
from errors import (
    MovieNoteError, RemoteUnavailable, AlreadyExists, InvalidCredentials, InvalidInput,
    NotFound, Unauthenticated,
)
from local_storage import LocalStorage

logger = logging.getLogger(__name__)

TOKEN_KEY = "auth.token"

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"
USER_UPDATED = "USER_UPDATED"

PASSWORD_ITERATIONS = 200_000
MIN_PASSWORD_LENGTH = 6


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _unb64(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def hash_password(password: str) -> str:
    salt = secrets.token_bytes(16)
    derived = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PASSWORD_ITERATIONS)
    return f"pbkdf2_sha256${PASSWORD_ITERATIONS}${_b64(salt)}${_b64(derived)}"


def verify_password(password: str, stored_hash: str) -> bool:
    try:
        alg, iterations, salt, expected = stored_hash.split("$", 3)
        if alg != "pbkdf2_sha256":
            return False
        derived = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), _unb64(salt), int(iterations))
        return hmac.compare_digest(derived, _unb64(expected))
    except (AttributeError, ValueError):
        # binascii.Error is a ValueError
        return False


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _movie_values(movie: Movie) -> dict:
    values = movie.to_dict()
    values["genres"] = list(movie.genres)
    return values


class RemoteStore:
    def __init__(self, local: LocalStorage, session_factory=SessionLocal,
                 session_ttl: timedelta = timedelta(hours=SESSION_TTL_HOURS)):
        self.local = local
        self._session_factory = session_factory
        self._session_ttl = session_ttl
        self._listeners: List[Callable] = []

    @asynccontextmanager
    async def _db(self, action: str):
        try:
            async with self._session_factory() as session:
                yield session
        except MovieNoteError:
            raise
        except (SQLAlchemyError, OSError) as e:
            logger.error("Store error during %s: %s", action, e)
            raise RemoteUnavailable(f"{action} failed: {e}") from e

    # ----- auth-state notifications

    def on_auth_state_change(self, callback: Callable) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    async def _notify(self, event: str, session: Optional[UserSession]):
        for callback in list(self._listeners):
            try:
                result = callback(event, session)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Auth listener failed on %s", event)

    # ----- auth

    def _to_session(self, user: models.User, auth: models.AuthSession) -> UserSession:
        return UserSession(
            user_id=user.id,
            email=user.email,
            access_token=auth.token,
            expires_at=_utc(auth.expires_at),
            user_metadata=dict(user.user_metadata or {}),
            created_at=_utc(user.created_at),
            last_sign_in_at=_utc(user.last_sign_in_at),
        )

    def _issue(self, db, user: models.User) -> models.AuthSession:
        auth = models.AuthSession(
            token=secrets.token_urlsafe(32),
            user_id=user.id,
            created_at=_now(),
            expires_at=_now() + self._session_ttl,
        )
        db.add(auth)
        return auth

    async def get_session(self) -> Optional[UserSession]:
        token = self.local.get(TOKEN_KEY)
        if not token:
            return None
        async with self._db("get_session") as db:
            row = (await db.execute(
                select(models.AuthSession, models.User)
                .join(models.User, models.User.id == models.AuthSession.user_id)
                .where(models.AuthSession.token == token)
            )).first()
            if row is None:
                self.local.remove(TOKEN_KEY)
                return None
            auth, user = row
            if _utc(auth.expires_at) <= _now():
                await db.delete(auth)
                await db.commit()
                self.local.remove(TOKEN_KEY)
                logger.info("Stored session for %s has expired", user.email)
                return None
            return self._to_session(user, auth)

    async def sign_up(self, email: str, password: str, display_name: Optional[str] = None) -> UserSession:
        email = normalize_email(email)
        if "@" not in email:
            raise InvalidInput("a valid email is required")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise InvalidInput(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
        metadata = {"display_name": display_name.strip()} if display_name and display_name.strip() else {}
        # pbkdf2 is slow on purpose; keep it off the event loop
        password_hash = await asyncio.to_thread(hash_password, password)
        async with self._db("sign_up") as db:
            db.add(models.User(
                id=str(uuid.uuid4()),
                email=email,
                password_hash=password_hash,
                user_metadata=metadata,
                created_at=_now(),
            ))
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise AlreadyExists(f"{email} is already registered")
        return await self.sign_in(email, password)

    async def sign_in(self, email: str, password: str) -> UserSession:
        email = normalize_email(email)
        async with self._db("sign_in") as db:
            user = (await db.execute(select(models.User).where(models.User.email == email))).scalar_one_or_none()
            if user is None or not await asyncio.to_thread(verify_password, password or "", user.password_hash):
                raise InvalidCredentials("invalid email or password")
            user.last_sign_in_at = _now()
            auth = self._issue(db, user)
            await db.commit()
            session = self._to_session(user, auth)
        self.local.set(TOKEN_KEY, session.access_token)
        await self._notify(SIGNED_IN, session)
        return session

    async def refresh_session(self) -> UserSession:
        token = self.local.get(TOKEN_KEY)
        if not token:
            raise Unauthenticated("no session to refresh")
        async with self._db("refresh_session") as db:
            row = (await db.execute(
                select(models.AuthSession, models.User)
                .join(models.User, models.User.id == models.AuthSession.user_id)
                .where(models.AuthSession.token == token)
            )).first()
            if row is None or _utc(row[0].expires_at) <= _now():
                raise Unauthenticated("session expired")
            old, user = row
            await db.delete(old)
            auth = self._issue(db, user)
            await db.commit()
            session = self._to_session(user, auth)
        self.local.set(TOKEN_KEY, session.access_token)
        await self._notify(TOKEN_REFRESHED, session)
        return session

    async def sign_out(self) -> None:
        token = self.local.get(TOKEN_KEY)
        try:
            if token:
                async with self._db("sign_out") as db:
                    await db.execute(delete(models.AuthSession).where(models.AuthSession.token == token))
                    await db.commit()
        finally:
            self.local.remove(TOKEN_KEY)
        await self._notify(SIGNED_OUT, None)

    async def update_user_metadata(self, **data) -> UserSession:
        token = self.local.get(TOKEN_KEY)
        if not token:
            raise Unauthenticated("sign in to update your account")
        async with self._db("update_user_metadata") as db:
            row = (await db.execute(
                select(models.AuthSession, models.User)
                .join(models.User, models.User.id == models.AuthSession.user_id)
                .where(models.AuthSession.token == token)
            )).first()
            if row is None:
                raise Unauthenticated("session expired")
            auth, user = row
            # reassign so the JSON column is flagged dirty
            user.user_metadata = {**(user.user_metadata or {}), **data}
            await db.commit()
            session = self._to_session(user, auth)
        await self._notify(USER_UPDATED, session)
        return session

    # ----- movies & watchlists

    async def upsert_movie(self, movie: Movie) -> None:
        async with self._db("upsert_movie") as db:
            await db.merge(models.Movie(**_movie_values(movie)))
            await db.commit()

    async def insert_watchlist_entry(self, user_id: str, movie_id: int) -> models.UserWatchlist:
        async with self._db("insert_watchlist_entry") as db:
            entry = models.UserWatchlist(
                user_id=user_id,
                movie_id=movie_id,
                added_at=_now(),
                watched=False,
                personal_rating=None,
                personal_notes=None,
            )
            db.add(entry)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise AlreadyExists(f"movie {movie_id} is already on the watchlist")
            return entry

    async def delete_watchlist_entry(self, user_id: str, movie_id: int) -> int:
        async with self._db("delete_watchlist_entry") as db:
            result = await db.execute(
                delete(models.UserWatchlist)
                .where(models.UserWatchlist.user_id == user_id)
                .where(models.UserWatchlist.movie_id == movie_id)
            )
            await db.commit()
            return result.rowcount or 0

    async def fetch_watchlist(self, user_id: str) -> List[Tuple[models.UserWatchlist, Optional[models.Movie]]]:
        async with self._db("fetch_watchlist") as db:
            rows = await db.execute(
                select(models.UserWatchlist, models.Movie)
                .outerjoin(models.Movie, models.Movie.id == models.UserWatchlist.movie_id)
                .where(models.UserWatchlist.user_id == user_id)
                .order_by(models.UserWatchlist.added_at.desc(), models.UserWatchlist.id.desc())
            )
            return [(entry, movie) for entry, movie in rows.all()]

    async def update_watchlist_entry(self, user_id: str, movie_id: int, values: dict):
        async with self._db("update_watchlist_entry") as db:
            row = (await db.execute(
                select(models.UserWatchlist, models.Movie)
                .outerjoin(models.Movie, models.Movie.id == models.UserWatchlist.movie_id)
                .where(models.UserWatchlist.user_id == user_id)
                .where(models.UserWatchlist.movie_id == movie_id)
            )).first()
            if row is None:
                raise NotFound(f"movie {movie_id} is not on the watchlist")
            entry, movie = row
            for key, value in values.items():
                setattr(entry, key, value)
            await db.commit()
            return entry, movie

    # ----- profiles

    async def fetch_profile(self, user_id: str) -> Optional[models.UserProfile]:
        async with self._db("fetch_profile") as db:
            return await db.get(models.UserProfile, user_id)

    async def insert_profile(self, values: dict) -> models.UserProfile:
        async with self._db("insert_profile") as db:
            profile = models.UserProfile(**values)
            db.add(profile)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise AlreadyExists("profile already exists")
            return profile

    async def update_profile(self, user_id: str, values: dict) -> models.UserProfile:
        async with self._db("update_profile") as db:
            profile = await db.get(models.UserProfile, user_id)
            if profile is None:
                raise NotFound("profile not found")
            for key, value in values.items():
                if key != "id":
                    setattr(profile, key, value)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise InvalidInput("username is already taken")
            return profile

"""Watchlist state: the remote-backed synchronizer and the local-only fallback.

The two storage tiers are never merged: entries kept locally while signed
out stay local after sign-in.
"""
import asyncio
import logging
from datetime import timezone
from enum import Enum
from typing import Dict, List, Optional

from entities import Movie, WatchlistEntry
from errors import (
    MovieNoteError, AlreadyExists, Busy, Cancelled, InvalidInput, NotFound, Result, Unauthenticated,
)
from local_storage import LocalStorage
from store import RemoteStore

logger = logging.getLogger(__name__)

FILTERS = ("all", "high-rated", "recent", "classics", "watched", "unwatched")
SORTS = ("added", "title", "rating", "release_date")

HIGH_RATING = 7.0
RECENT_FROM_YEAR = 2020
CLASSICS_BEFORE_YEAR = 2000
MAX_NOTES_LENGTH = 500
UPDATABLE_FIELDS = ("watched", "personal_rating", "personal_notes")


class WatchlistState(Enum):
    EMPTY = "empty"
    LOADING = "loading"
    READY = "ready"
    MUTATING = "mutating"


def _movie_id(movie) -> int:
    if isinstance(movie, WatchlistEntry):
        return movie.movie_id
    if isinstance(movie, Movie):
        return movie.id
    return int(movie)


def filter_entries(entries, filter_key: str = "all", rating_threshold: float = HIGH_RATING,
                   after_year: int = RECENT_FROM_YEAR, before_year: int = CLASSICS_BEFORE_YEAR) -> List[WatchlistEntry]:
    if filter_key not in FILTERS:
        raise ValueError(f"unknown filter: {filter_key}")
    entries = list(entries)
    if filter_key == "high-rated":
        return [e for e in entries if e.movie.vote_average >= rating_threshold]
    if filter_key == "recent":
        return [e for e in entries if e.movie.release_year is not None and e.movie.release_year >= after_year]
    if filter_key == "classics":
        return [e for e in entries if e.movie.release_year is not None and e.movie.release_year < before_year]
    if filter_key == "watched":
        return [e for e in entries if e.watched]
    if filter_key == "unwatched":
        return [e for e in entries if not e.watched]
    return entries


def _timestamp(entry: WatchlistEntry) -> float:
    added = entry.added_at
    if added.tzinfo is None:
        added = added.replace(tzinfo=timezone.utc)
    return added.timestamp()


def sort_entries(entries, sort_key: str = "added") -> List[WatchlistEntry]:
    if sort_key not in SORTS:
        raise ValueError(f"unknown sort: {sort_key}")
    entries = list(entries)
    if sort_key == "title":
        return sorted(entries, key=lambda e: e.movie.title.casefold())
    if sort_key == "rating":
        return sorted(entries, key=lambda e: -e.movie.vote_average)
    if sort_key == "release_date":
        dated = [e for e in entries if e.movie.release_date]
        undated = [e for e in entries if not e.movie.release_date]
        return sorted(dated, key=lambda e: e.movie.release_date, reverse=True) + undated
    # newest first; entries without a timestamp keep insertion order after the rest
    return sorted(entries, key=lambda e: (e.added_at is None, -_timestamp(e) if e.added_at else 0))


def watchlist_view(entries, filter_key: str = "all", sort_key: str = "added", **filter_options) -> List[WatchlistEntry]:
    return sort_entries(filter_entries(entries, filter_key, **filter_options), sort_key)


class RemoteRepository:
    def __init__(self, store: RemoteStore):
        self.store = store

    async def load(self, user_id: str) -> List[WatchlistEntry]:
        entries = []
        for row, movie_row in await self.store.fetch_watchlist(user_id):
            if movie_row is None:
                logger.warning("Skipping watchlist entry %s: %s", row.id, NotFound(f"movie {row.movie_id} missing"))
                continue
            entries.append(WatchlistEntry.from_row(row, Movie.from_row(movie_row)))
        return entries

    async def add(self, user_id: str, movie: Movie) -> WatchlistEntry:
        await self.store.upsert_movie(movie)
        row = await self.store.insert_watchlist_entry(user_id, movie.id)
        return WatchlistEntry.from_row(row, movie)

    async def remove(self, user_id: str, movie_id: int) -> int:
        return await self.store.delete_watchlist_entry(user_id, movie_id)

    async def update(self, user_id: str, movie_id: int, values: dict) -> WatchlistEntry:
        row, movie_row = await self.store.update_watchlist_entry(user_id, movie_id, values)
        if movie_row is None:
            raise NotFound(f"movie {movie_id} missing")
        return WatchlistEntry.from_row(row, Movie.from_row(movie_row))


class LocalRepository:
    KEY = "movieWatchlist"

    def __init__(self, local: LocalStorage):
        self.local = local

    def load(self) -> List[WatchlistEntry]:
        entries = []
        data = self.local.get(self.KEY, [])
        for item in data if isinstance(data, list) else []:
            try:
                entries.append(WatchlistEntry(movie=Movie.from_api(item)))
            except (AttributeError, TypeError, ValueError):
                logger.warning("Dropping malformed local watchlist item: %r", item)
        return entries

    def save(self, entries) -> bool:
        return self.local.set(self.KEY, [e.movie.to_dict() for e in entries])

    def add(self, movie: Movie) -> WatchlistEntry:
        entries = self.load()
        if any(e.movie_id == movie.id for e in entries):
            raise AlreadyExists(f"{movie.title} is already on your list")
        entry = WatchlistEntry(movie=movie)
        self.save(entries + [entry])
        return entry

    def remove(self, movie_id: int) -> bool:
        entries = self.load()
        kept = [e for e in entries if e.movie_id != movie_id]
        if len(kept) == len(entries):
            return False
        self.save(kept)
        return True


class LocalWatchlist:
    """Watchlist for signed-out users, kept only in local storage."""

    def __init__(self, repository: LocalRepository):
        self.repository = repository

    @property
    def entries(self):
        return tuple(self.repository.load())

    def add(self, movie: Movie) -> Result:
        try:
            return Result.success(self.repository.add(movie))
        except AlreadyExists as e:
            return Result.failure(e)

    def remove(self, movie) -> Result:
        return Result.success(self.repository.remove(_movie_id(movie)))

    def view(self, filter_key: str = "all", sort_key: str = "added", **filter_options):
        return watchlist_view(self.entries, filter_key, sort_key, **filter_options)


class WatchlistSynchronizer:
    """In-memory mirror of one user's remote watchlist.

    The mirror only changes after the store confirms a write. In-flight
    operations are tracked per key: loads for the same user share one task,
    and a second add, remove or update for a movie already being processed
    is rejected with Busy. So is a reload of the same user while writes are
    still in flight. Results that arrive after clear() or close() are
    dropped.
    """

    def __init__(self, repository: RemoteRepository):
        self.repository = repository
        self.state = WatchlistState.EMPTY
        self.user_id: Optional[str] = None
        self._entries: List[WatchlistEntry] = []
        self._pending: Dict[tuple, int] = {}
        self._loads: Dict[str, asyncio.Task] = {}
        self._generation = 0
        self._closed = False

    @property
    def entries(self):
        return tuple(self._entries)

    @property
    def pending(self):
        return frozenset(self._pending)

    def contains(self, movie) -> bool:
        movie_id = _movie_id(movie)
        return any(e.movie_id == movie_id for e in self._entries)

    def get(self, movie) -> Optional[WatchlistEntry]:
        movie_id = _movie_id(movie)
        return next((e for e in self._entries if e.movie_id == movie_id), None)

    def view(self, filter_key: str = "all", sort_key: str = "added", **filter_options):
        return watchlist_view(self._entries, filter_key, sort_key, **filter_options)

    def _is_current(self, generation: int, user_id: str) -> bool:
        return not self._closed and generation == self._generation and self.user_id == user_id

    def _begin(self, key):
        self._pending[key] = self._generation
        if self.state == WatchlistState.READY:
            self.state = WatchlistState.MUTATING

    def _end(self, key, generation: int):
        # a key re-used after clear() belongs to the newer operation
        if self._pending.get(key) == generation:
            del self._pending[key]
        if not self._pending and self.state == WatchlistState.MUTATING:
            self.state = WatchlistState.READY

    def _reset(self):
        self._generation += 1
        self._entries = []
        self._pending.clear()
        self._loads.clear()

    def _guard(self, action: str) -> Optional[MovieNoteError]:
        if self._closed:
            return Cancelled("watchlist is closed")
        if self.user_id is None:
            return Unauthenticated(f"sign in to {action}")
        if self.state == WatchlistState.LOADING:
            return Busy("watchlist is still loading")
        return None

    # ----- load

    async def load(self, user_id: str) -> Result:
        if self._closed:
            return Result.failure(Cancelled("watchlist is closed"))
        task = self._loads.get(user_id)
        if task is not None:
            logger.debug("Watchlist load for %s already in flight, joining it", user_id)
            return await task
        if self.user_id != user_id:
            self._reset()
        elif self._pending:
            # a snapshot fetched now could miss writes that have not committed yet
            logger.debug("Not reloading watchlist for %s, %d changes in flight", user_id, len(self._pending))
            return Result.failure(Busy("watchlist changes are still being saved"))
        self.user_id = user_id
        self.state = WatchlistState.LOADING
        task = asyncio.ensure_future(self._load(user_id, self._generation))
        self._loads[user_id] = task
        return await task

    async def _load(self, user_id: str, generation: int) -> Result:
        try:
            entries = await self.repository.load(user_id)
        except MovieNoteError as e:
            logger.error("Failed to load watchlist for %s: %s", user_id, e)
            if self._is_current(generation, user_id):
                self._entries = []
                self.state = WatchlistState.READY
            return Result.failure(e)
        finally:
            if self._loads.get(user_id) is asyncio.current_task():
                del self._loads[user_id]
        if not self._is_current(generation, user_id):
            return Result.failure(Cancelled("watchlist changed while loading"))
        self._entries = list(entries)
        self.state = WatchlistState.READY
        logger.debug("Loaded %d watchlist entries for %s", len(entries), user_id)
        return Result.success(self.entries)

    # ----- mutations

    async def add(self, movie: Movie) -> Result:
        error = self._guard("add movies to your list")
        if error:
            return Result.failure(error)
        if self.contains(movie):
            return Result.failure(AlreadyExists(f"{movie.title} is already on your list"))
        key = ("add", movie.id)
        if key in self._pending:
            return Result.failure(Busy(f"{movie.title} is already being added"))
        user_id, generation = self.user_id, self._generation
        self._begin(key)
        try:
            entry = await self.repository.add(user_id, movie)
        except MovieNoteError as e:
            logger.error("Failed to add movie %s for %s: %s", movie.id, user_id, e)
            return Result.failure(e)
        finally:
            self._end(key, generation)
        if not self._is_current(generation, user_id):
            return Result.failure(Cancelled("signed out before the add finished"))
        self._entries = [entry] + [e for e in self._entries if e.movie_id != movie.id]
        return Result.success(entry)

    async def remove(self, movie) -> Result:
        error = self._guard("remove movies from your list")
        if error:
            return Result.failure(error)
        movie_id = _movie_id(movie)
        key = ("remove", movie_id)
        if key in self._pending:
            return Result.failure(Busy(f"movie {movie_id} is already being removed"))
        if not self.contains(movie_id):
            logger.debug("Movie %s is not on the watchlist, nothing to remove", movie_id)
            return Result.success(0)
        user_id, generation = self.user_id, self._generation
        self._begin(key)
        try:
            deleted = await self.repository.remove(user_id, movie_id)
        except MovieNoteError as e:
            logger.error("Failed to remove movie %s for %s: %s", movie_id, user_id, e)
            return Result.failure(e)
        finally:
            self._end(key, generation)
        if not self._is_current(generation, user_id):
            return Result.failure(Cancelled("signed out before the removal finished"))
        self._entries = [e for e in self._entries if e.movie_id != movie_id]
        return Result.success(deleted)

    async def update(self, movie, **changes) -> Result:
        error = self._guard("update your list")
        if error:
            return Result.failure(error)
        try:
            values = validate_changes(changes)
        except InvalidInput as e:
            return Result.failure(e)
        movie_id = _movie_id(movie)
        if not self.contains(movie_id):
            return Result.failure(NotFound(f"movie {movie_id} is not on your list"))
        key = ("update", movie_id)
        if key in self._pending:
            return Result.failure(Busy(f"movie {movie_id} is already being updated"))
        user_id, generation = self.user_id, self._generation
        self._begin(key)
        try:
            entry = await self.repository.update(user_id, movie_id, values)
        except MovieNoteError as e:
            logger.error("Failed to update movie %s for %s: %s", movie_id, user_id, e)
            return Result.failure(e)
        finally:
            self._end(key, generation)
        if not self._is_current(generation, user_id):
            return Result.failure(Cancelled("signed out before the update finished"))
        self._entries = [entry if e.movie_id == movie_id else e for e in self._entries]
        return Result.success(entry)

    # ----- lifecycle

    def clear(self):
        self._reset()
        self.user_id = None
        self.state = WatchlistState.EMPTY

    def close(self):
        self.clear()
        self._closed = True


def validate_changes(changes: dict) -> dict:
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise InvalidInput(f"cannot update {', '.join(sorted(unknown))}")
    values = {}
    if "watched" in changes:
        values["watched"] = bool(changes["watched"])
    if "personal_rating" in changes:
        rating = changes["personal_rating"]
        if rating is not None:
            try:
                rating = float(rating)
            except (TypeError, ValueError):
                raise InvalidInput("rating must be a number from 1 to 10")
            if not 1 <= rating <= 10:
                raise InvalidInput("rating must be a number from 1 to 10")
        values["personal_rating"] = rating
    if "personal_notes" in changes:
        notes = (changes["personal_notes"] or "").strip()
        if len(notes) > MAX_NOTES_LENGTH:
            raise InvalidInput(f"notes must be at most {MAX_NOTES_LENGTH} characters")
        values["personal_notes"] = notes or None
    if not values:
        raise InvalidInput("nothing to update")
    return values

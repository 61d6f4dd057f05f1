from dataclasses import dataclass, field, asdict, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from config import TMDB_IMAGE_URL

# TMDB movie genre ids, used when search results only carry genre_ids
TMDB_GENRES = {
    28: "Action", 12: "Adventure", 16: "Animation", 35: "Comedy", 80: "Crime",
    99: "Documentary", 18: "Drama", 10751: "Family", 14: "Fantasy", 36: "History",
    27: "Horror", 10402: "Music", 9648: "Mystery", 10749: "Romance",
    878: "Science Fiction", 10770: "TV Movie", 53: "Thriller", 10752: "War", 37: "Western",
}
GENRE_NAMES = tuple(sorted(TMDB_GENRES.values()))


def _text(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _number(value, cast, default):
    try:
        return cast(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def _genres(payload: dict) -> Tuple[str, ...]:
    names = []
    for g in payload.get("genres") or []:
        name = g.get("name") if isinstance(g, dict) else g
        if name:
            names.append(str(name))
    if not names:
        names = [TMDB_GENRES[g] for g in payload.get("genre_ids") or [] if g in TMDB_GENRES]
    return tuple(names)


@dataclass(frozen=True)
class Movie:
    id: int
    title: str = ""
    overview: str = ""
    release_date: Optional[str] = None
    poster_path: Optional[str] = None
    backdrop_path: Optional[str] = None
    vote_average: float = 0.0
    vote_count: int = 0
    runtime: Optional[int] = None
    genres: Tuple[str, ...] = ()
    original_title: Optional[str] = None
    original_language: Optional[str] = None
    adult: bool = False
    popularity: float = 0.0

    @classmethod
    def from_api(cls, payload: dict) -> "Movie":
        """Build a Movie from a catalog payload, applying every defaulting rule."""
        if payload.get("id") is None:
            raise ValueError("movie payload has no id")
        release_date = _text(payload.get("release_date"))
        return cls(
            id=int(payload["id"]),
            title=_text(payload.get("title")) or _text(payload.get("original_title")) or "",
            overview=_text(payload.get("overview")) or "",
            release_date=release_date[:10] if release_date else None,
            poster_path=_text(payload.get("poster_path")),
            backdrop_path=_text(payload.get("backdrop_path")),
            vote_average=_number(payload.get("vote_average"), float, 0.0),
            vote_count=_number(payload.get("vote_count"), int, 0),
            runtime=_number(payload.get("runtime"), int, None) or None,
            genres=_genres(payload),
            original_title=_text(payload.get("original_title")),
            original_language=_text(payload.get("original_language")),
            adult=bool(payload.get("adult", False)),
            popularity=_number(payload.get("popularity"), float, 0.0),
        )

    @classmethod
    def from_row(cls, row) -> "Movie":
        return cls.from_api({
            "id": row.id,
            "title": row.title,
            "overview": row.overview,
            "release_date": row.release_date,
            "poster_path": row.poster_path,
            "backdrop_path": row.backdrop_path,
            "vote_average": row.vote_average,
            "vote_count": row.vote_count,
            "runtime": row.runtime,
            "genres": list(row.genres or []),
            "original_title": row.original_title,
            "original_language": row.original_language,
            "adult": row.adult,
            "popularity": row.popularity,
        })

    def to_dict(self) -> dict:
        data = asdict(self)
        data["genres"] = list(self.genres)
        return data

    @property
    def release_year(self) -> Optional[int]:
        if not self.release_date:
            return None
        try:
            return int(self.release_date[:4])
        except ValueError:
            return None

    def poster_url(self, size: str = "w500") -> Optional[str]:
        if not self.poster_path:
            return None
        return f"{TMDB_IMAGE_URL}/{size}{self.poster_path}"


@dataclass(frozen=True)
class WatchlistEntry:
    movie: Movie
    user_id: Optional[str] = None
    entry_id: Optional[int] = None
    added_at: Optional[datetime] = None
    watched: bool = False
    personal_rating: Optional[float] = None
    personal_notes: Optional[str] = None

    @property
    def movie_id(self) -> int:
        return self.movie.id

    @classmethod
    def from_row(cls, row, movie: Movie) -> "WatchlistEntry":
        return cls(
            movie=movie,
            user_id=row.user_id,
            entry_id=row.id,
            added_at=row.added_at,
            watched=bool(row.watched),
            personal_rating=row.personal_rating,
            personal_notes=row.personal_notes,
        )


@dataclass(frozen=True)
class UserSession:
    user_id: str
    email: str
    access_token: str
    expires_at: datetime
    user_metadata: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None
    last_sign_in_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        name = (self.user_metadata or {}).get("display_name")
        if name:
            return name
        return self.email.split("@")[0] if self.email else "User"


class PrivacyLevel(str, Enum):
    PUBLIC = "public"
    FRIENDS = "friends"
    PRIVATE = "private"


@dataclass
class Profile:
    user_id: str
    username: str = ""
    display_name: str = ""
    avatar_url: str = ""
    bio: str = ""
    favorite_genres: list = field(default_factory=list)
    location: str = ""
    website: str = ""
    birth_date: str = ""
    privacy_level: PrivacyLevel = PrivacyLevel.PUBLIC

    def with_changes(self, **changes) -> "Profile":
        return replace(self, **changes)

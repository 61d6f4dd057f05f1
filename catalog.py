import asyncio
import logging
from datetime import date
from typing import List, Optional

import aiohttp

from config import TMDB_API_KEY, TMDB_API_URL, HTTP_TIMEOUT
from entities import Movie
from errors import RemoteUnavailable

logger = logging.getLogger(__name__)

DEFAULT_SORT = "popularity.desc"
SORT_FIELDS = ("popularity", "vote_average", "release_date", "alphabet")
SORT_OPTIONS = tuple(f"{f}.{d}" for f in SORT_FIELDS for d in ("desc", "asc"))
TRENDING_LIMIT = 8


def _release_key(movie: Movie):
    try:
        return date.fromisoformat(movie.release_date) if movie.release_date else None
    except ValueError:
        return None


def sort_movies(movies, sort_option: str = DEFAULT_SORT) -> List[Movie]:
    """Return a sorted copy; the input is left untouched. Undated movies go last."""
    if sort_option not in SORT_OPTIONS:
        raise ValueError(f"unknown sort option: {sort_option}")
    field, direction = sort_option.split(".")
    reverse = direction == "desc"
    movies = list(movies)
    if field == "alphabet":
        return sorted(movies, key=lambda m: (m.title.casefold(), m.id), reverse=reverse)
    if field == "release_date":
        dated = [m for m in movies if _release_key(m)]
        undated = [m for m in movies if not _release_key(m)]
        return sorted(dated, key=lambda m: (_release_key(m), m.id), reverse=reverse) + undated
    return sorted(movies, key=lambda m: (getattr(m, field), m.id), reverse=reverse)


class MovieCatalog:
    def __init__(self, api_key: str = TMDB_API_KEY, base_url: str = TMDB_API_URL, timeout: float = HTTP_TIMEOUT):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def _get_json(self, path: str, params: Optional[dict] = None) -> dict:
        params = dict(params or {}, api_key=self.api_key)
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.get(f"{self.base_url}{path}", params=params) as resp:
                    if resp.status != 200:
                        raise RemoteUnavailable(f"TMDB API error: status {resp.status}")
                    data = await resp.json()
        except asyncio.TimeoutError as e:
            raise RemoteUnavailable(f"TMDB API timeout on {path}") from e
        except aiohttp.ClientError as e:
            raise RemoteUnavailable(f"TMDB API request failed: {e}") from e
        except ValueError as e:
            raise RemoteUnavailable(f"TMDB API returned invalid JSON on {path}") from e
        if not isinstance(data, dict):
            raise RemoteUnavailable(f"TMDB API returned unexpected payload on {path}")
        return data

    def _movies(self, data: dict) -> List[Movie]:
        movies = []
        results = data.get("results")
        for item in results if isinstance(results, list) else []:
            try:
                movies.append(Movie.from_api(item))
            except (AttributeError, ValueError):
                logger.debug("Skipping malformed catalog result: %r", item)
        return movies

    async def search(self, query: str) -> List[Movie]:
        query = (query or "").strip()
        if not query:
            return []
        try:
            data = await self._get_json("/search/movie", {"query": query})
        except RemoteUnavailable as e:
            logger.error("Error fetching movies for %r: %s", query, e)
            return []
        return self._movies(data)

    async def trending(self, limit: int = TRENDING_LIMIT) -> List[Movie]:
        try:
            data = await self._get_json("/trending/movie/week")
        except RemoteUnavailable as e:
            logger.error("Error fetching trending movies: %s", e)
            return []
        return self._movies(data)[:limit]


class MovieSearch:
    """Search box state: the last query, its results and the active sort."""

    def __init__(self, catalog: MovieCatalog, sort_option: str = DEFAULT_SORT):
        if sort_option not in SORT_OPTIONS:
            raise ValueError(f"unknown sort option: {sort_option}")
        self.catalog = catalog
        self.sort_option = sort_option
        self.query = ""
        self.results: List[Movie] = []
        self.loading = False

    async def run(self, query: str) -> List[Movie]:
        if not (query or "").strip():
            return self.results
        self.query = query.strip()
        self.loading = True
        try:
            found = await self.catalog.search(self.query)
        finally:
            self.loading = False
        self.results = sort_movies(found, self.sort_option)
        return self.results

    def sort(self, sort_option: str) -> List[Movie]:
        self.results = sort_movies(self.results, sort_option)
        self.sort_option = sort_option
        return self.results

    def find(self, movie_id: int) -> Optional[Movie]:
        return next((m for m in self.results if m.id == movie_id), None)

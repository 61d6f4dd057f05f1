import logging
from collections import OrderedDict
from pathlib import Path
from typing import Callable, Optional

from catalog import MovieCatalog, MovieSearch
from config import LOCAL_FALLBACK, LOCAL_STORAGE_PATH, MAX_ACTIVE_CHATS, SESSION_INIT_TIMEOUT
from entities import Movie, Profile, UserSession
from errors import Result, Unauthenticated
from local_storage import LocalStorage
from profiles import ProfileService
from session_manager import SessionManager
from store import RemoteStore, SIGNED_IN, SIGNED_OUT
from watchlist import LocalRepository, LocalWatchlist, RemoteRepository, WatchlistSynchronizer

logger = logging.getLogger(__name__)

THEME_KEY = "theme"
THEMES = ("dark", "light")


class AppState:
    """Everything one view needs: session, watchlist, search, profile and theme.

    Views read from it and call its methods; nothing else mutates the state.
    """

    def __init__(self, local: LocalStorage, store: Optional[RemoteStore] = None,
                 catalog: Optional[MovieCatalog] = None, local_fallback: bool = LOCAL_FALLBACK,
                 init_timeout: float = SESSION_INIT_TIMEOUT):
        self.local = local
        self.store = store or RemoteStore(local)
        self.sessions = SessionManager(self.store, init_timeout)
        self.watchlist = WatchlistSynchronizer(RemoteRepository(self.store))
        self.local_watchlist = LocalWatchlist(LocalRepository(local))
        self.profiles = ProfileService(self.store)
        self.catalog = catalog or MovieCatalog()
        self.search = MovieSearch(self.catalog)
        self.local_fallback = local_fallback
        theme = local.get(THEME_KEY, THEMES[0])
        self.theme = theme if theme in THEMES else THEMES[0]
        self.started = False
        self.trending_movies = []
        self._unsubscribe = self.sessions.subscribe(self._on_session_change)

    @classmethod
    def for_view(cls, view_id, root=LOCAL_STORAGE_PATH, **kwargs) -> "AppState":
        return cls(LocalStorage(Path(root) / str(view_id)), **kwargs)

    @property
    def session(self) -> Optional[UserSession]:
        return self.sessions.session

    @property
    def signed_in(self) -> bool:
        return self.session is not None

    async def start(self):
        if not self.started:
            self.started = True
            await self.sessions.initialize()

    async def _on_session_change(self, event, session):
        if event == SIGNED_IN:
            await self.watchlist.load(session.user_id)
        elif event == SIGNED_OUT:
            self.watchlist.clear()

    # ----- session

    async def sign_in(self, email: str, password: str) -> Result:
        return await self.sessions.sign_in(email, password)

    async def sign_up(self, email: str, password: str, display_name: Optional[str] = None) -> Result:
        return await self.sessions.sign_up(email, password, display_name)

    async def sign_out(self) -> Result:
        return await self.sessions.sign_out()

    # ----- theme

    def set_theme(self, theme: str) -> str:
        if theme not in THEMES:
            raise ValueError(f"unknown theme: {theme}")
        self.theme = theme
        self.local.set(THEME_KEY, theme)
        return theme

    def toggle_theme(self) -> str:
        return self.set_theme("light" if self.theme == "dark" else "dark")

    # ----- watchlist

    @property
    def entries(self):
        if self.signed_in:
            return self.watchlist.entries
        if self.local_fallback:
            return self.local_watchlist.entries
        return ()

    def contains(self, movie) -> bool:
        movie_id = movie.id if isinstance(movie, Movie) else int(movie)
        return any(e.movie_id == movie_id for e in self.entries)

    def watchlist_view(self, filter_key: str = "all", sort_key: str = "added"):
        if self.signed_in:
            return self.watchlist.view(filter_key, sort_key)
        if self.local_fallback:
            return self.local_watchlist.view(filter_key, sort_key)
        return []

    async def add(self, movie: Movie) -> Result:
        if self.signed_in:
            return await self.watchlist.add(movie)
        if self.local_fallback:
            return self.local_watchlist.add(movie)
        return Result.failure(Unauthenticated("sign in to add movies to your list"))

    async def remove(self, movie) -> Result:
        if self.signed_in:
            return await self.watchlist.remove(movie)
        if self.local_fallback:
            return self.local_watchlist.remove(movie)
        return Result.failure(Unauthenticated("sign in to manage your list"))

    async def update(self, movie, **changes) -> Result:
        if not self.signed_in:
            return Result.failure(Unauthenticated("sign in to rate and annotate movies"))
        return await self.watchlist.update(movie, **changes)

    # ----- catalog

    async def search_movies(self, query: str):
        return await self.search.run(query)

    def sort_results(self, sort_option: str):
        return self.search.sort(sort_option)

    async def trending(self):
        self.trending_movies = await self.catalog.trending()
        return self.trending_movies

    def find_movie(self, movie_id: int) -> Optional[Movie]:
        movie = self.search.find(movie_id) or next((m for m in self.trending_movies if m.id == movie_id), None)
        if movie is None:
            entry = next((e for e in self.entries if e.movie_id == movie_id), None)
            movie = entry.movie if entry else None
        return movie

    # ----- profile

    async def load_profile(self) -> Result:
        return await self.profiles.load(self.session)

    async def save_profile(self, profile: Profile) -> Result:
        return await self.profiles.save(self.session, profile)

    def close(self):
        self._unsubscribe()
        self.sessions.close()
        self.watchlist.close()


class AppStateCache:
    """One AppState per view id, bounded; the least recently used is closed first.

    An evicted view keeps its local storage, so the next request rebuilds
    its state and restores the saved session.
    """

    def __init__(self, factory: Optional[Callable] = None, max_size: int = MAX_ACTIVE_CHATS):
        self.factory = factory or AppState.for_view
        self.max_size = max_size
        self._states: "OrderedDict[object, AppState]" = OrderedDict()

    def __len__(self):
        return len(self._states)

    def __contains__(self, view_id):
        return view_id in self._states

    async def get(self, view_id) -> AppState:
        app = self._states.get(view_id)
        if app is not None:
            self._states.move_to_end(view_id)
            return app
        app = self._states[view_id] = self.factory(view_id)
        while len(self._states) > self.max_size:
            evicted_id, evicted = self._states.popitem(last=False)
            logger.debug("Closing idle state for view %s", evicted_id)
            evicted.close()
        await app.start()
        return app

    def close(self):
        for app in self._states.values():
            app.close()
        self._states.clear()

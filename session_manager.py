import asyncio
import inspect
import logging
from typing import Callable, List, Optional

from config import SESSION_INIT_TIMEOUT
from entities import UserSession
from errors import MovieNoteError, RemoteUnavailable, Result
from store import RemoteStore, SIGNED_IN, SIGNED_OUT

logger = logging.getLogger(__name__)


class SessionManager:
    """Tracks who is signed in and tells dependents when that changes.

    Listeners are called as ``listener(event, session)`` and may be
    coroutine functions. Sign-out clears local state before the store is
    asked to forget the session.
    """

    def __init__(self, store: RemoteStore, init_timeout: float = SESSION_INIT_TIMEOUT):
        self.store = store
        self.init_timeout = init_timeout
        self.session: Optional[UserSession] = None
        self._listeners: List[Callable] = []
        self._detach = store.on_auth_state_change(self._on_store_event)

    @property
    def user_id(self) -> Optional[str]:
        return self.session.user_id if self.session else None

    async def initialize(self) -> Optional[UserSession]:
        try:
            session = await asyncio.wait_for(self.store.get_session(), timeout=self.init_timeout)
        except asyncio.TimeoutError:
            logger.warning("Session check timed out after %.1fs, continuing signed out", self.init_timeout)
            session = None
        except RemoteUnavailable as e:
            logger.warning("Session check failed, continuing signed out: %s", e)
            session = None
        if session is not None:
            self.session = session
            await self._emit(SIGNED_IN, session)
        return session

    def subscribe(self, on_change: Callable) -> Callable[[], None]:
        self._listeners.append(on_change)

        def unsubscribe():
            if on_change in self._listeners:
                self._listeners.remove(on_change)

        return unsubscribe

    async def _emit(self, event: str, session: Optional[UserSession]):
        for listener in list(self._listeners):
            try:
                result = listener(event, session)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Session listener failed on %s", event)

    async def _on_store_event(self, event: str, session: Optional[UserSession]):
        if event == SIGNED_OUT:
            if self.session is None:
                return
            self.session = None
        else:
            self.session = session
        await self._emit(event, session)

    async def sign_in(self, email: str, password: str) -> Result:
        try:
            session = await self.store.sign_in(email, password)
        except MovieNoteError as e:
            logger.warning("Sign-in failed for %s: %s", email, e)
            return Result.failure(e)
        return Result.success(session)

    async def sign_up(self, email: str, password: str, display_name: Optional[str] = None) -> Result:
        try:
            session = await self.store.sign_up(email, password, display_name)
        except MovieNoteError as e:
            logger.warning("Sign-up failed for %s: %s", email, e)
            return Result.failure(e)
        return Result.success(session)

    async def refresh(self) -> Result:
        try:
            session = await self.store.refresh_session()
        except MovieNoteError as e:
            logger.warning("Session refresh failed: %s", e)
            return Result.failure(e)
        return Result.success(session)

    async def sign_out(self) -> Result:
        previous, self.session = self.session, None
        if previous is not None:
            await self._emit(SIGNED_OUT, None)
        try:
            await self.store.sign_out()
        except MovieNoteError as e:
            logger.error("Remote sign-out failed, local session already cleared: %s", e)
        return Result.success()

    def close(self):
        self._detach()
        self._listeners.clear()

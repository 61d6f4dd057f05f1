import shutil
import tempfile
from pathlib import Path

from database import init_db, make_engine, make_session_factory
from entities import Movie
from local_storage import LocalStorage
from store import RemoteStore


def make_movie(movie_id, title="Movie", vote_average=6.0, release_date="2010-05-01", **extra):
    return Movie.from_api(dict(id=movie_id, title=title, vote_average=vote_average,
                               release_date=release_date, **extra))


class StoreFixture:
    """Temporary SQLite database plus local storage directory for one test."""

    async def start(self):
        self.tmp = Path(tempfile.mkdtemp(prefix="movienote-"))
        self.engine = make_engine(f"sqlite+aiosqlite:///{self.tmp / 'test.db'}")
        await init_db(self.engine)
        self.session_factory = make_session_factory(self.engine)
        return self

    def local(self, name="view"):
        return LocalStorage(self.tmp / "local" / name)

    def store(self, name="view"):
        return RemoteStore(self.local(name), session_factory=self.session_factory)

    async def close(self):
        await self.engine.dispose()
        shutil.rmtree(self.tmp, ignore_errors=True)

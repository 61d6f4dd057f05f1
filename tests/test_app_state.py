import unittest
from unittest import mock

from app_state import AppState, AppStateCache
from catalog import MovieCatalog
from errors import RemoteUnavailable
from watchlist import WatchlistState
from support import StoreFixture, make_movie


class TestAppState(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.fx = await StoreFixture().start()
        self.catalog = mock.Mock(spec=MovieCatalog)
        self.app = self.make_app()
        await self.app.start()

    async def asyncTearDown(self):
        self.app.close()
        await self.fx.close()

    def make_app(self, name="view", **kwargs):
        local = self.fx.local(name)
        return AppState(local, store=self.fx.store(name), catalog=self.catalog, **kwargs)

    async def test_signed_out_uses_local_list(self):
        self.assertFalse(self.app.signed_in)
        self.assertTrue((await self.app.add(make_movie(1, "Local"))).ok)
        self.assertEqual((await self.app.add(make_movie(1, "Local"))).reason, "already_exists")
        self.assertEqual([e.movie.title for e in self.app.entries], ["Local"])
        self.assertIsNone(self.app.entries[0].entry_id)
        self.assertEqual((await self.app.update(1, watched=True)).reason, "unauthenticated")
        self.assertTrue((await self.app.remove(1)).ok)
        self.assertEqual(self.app.entries, ())

    async def test_without_fallback_adds_need_sign_in(self):
        app = self.make_app("strict", local_fallback=False)
        await app.start()
        self.assertEqual((await app.add(make_movie(1))).reason, "unauthenticated")
        self.assertEqual((await app.remove(make_movie(1))).reason, "unauthenticated")
        self.assertEqual(app.watchlist_view(), [])
        app.close()

    async def test_sign_in_loads_remote_list_and_never_merges_local(self):
        await self.app.add(make_movie(1, "Local only"))
        result = await self.app.sign_up("rae@example.com", "password")
        self.assertTrue(result.ok)
        self.assertEqual(self.app.watchlist.state, WatchlistState.READY)
        self.assertEqual(self.app.entries, ())

        await self.app.add(make_movie(2, "Synced"))
        self.assertEqual([e.movie_id for e in self.app.entries], [2])

        await self.app.sign_out()
        self.assertEqual([e.movie_id for e in self.app.entries], [1])

    async def test_sign_out_clears_mirror_even_if_remote_fails(self):
        await self.app.sign_up("sam@example.com", "password")
        await self.app.add(make_movie(3))
        failing = mock.AsyncMock(side_effect=RemoteUnavailable("down"))
        with mock.patch.object(self.app.store, "sign_out", failing):
            with self.assertLogs("session_manager", level="ERROR"):
                result = await self.app.sign_out()
        self.assertTrue(result.ok)
        self.assertIsNone(self.app.session)
        self.assertEqual(self.app.watchlist.entries, ())
        self.assertEqual(self.app.watchlist.state, WatchlistState.EMPTY)

    async def test_restart_restores_session_and_list(self):
        await self.app.sign_up("tia@example.com", "password")
        await self.app.add(make_movie(4, "Persisted"))
        self.app.close()

        self.app = self.make_app()
        await self.app.start()
        self.assertTrue(self.app.signed_in)
        self.assertEqual([e.movie.title for e in self.app.entries], ["Persisted"])

    async def test_theme_toggle_persists(self):
        self.assertEqual(self.app.theme, "dark")
        self.assertEqual(self.app.toggle_theme(), "light")
        self.assertEqual(self.make_app().theme, "light")
        with self.assertRaises(ValueError):
            self.app.set_theme("sepia")

    async def test_find_movie_looks_at_results_and_list(self):
        self.catalog.search = mock.AsyncMock(return_value=[make_movie(5, "Found")])
        self.catalog.trending = mock.AsyncMock(return_value=[make_movie(6, "Hot")])
        await self.app.search_movies("found")
        await self.app.trending()
        await self.app.add(make_movie(7, "Saved"))
        self.assertEqual(self.app.find_movie(5).title, "Found")
        self.assertEqual(self.app.find_movie(6).title, "Hot")
        self.assertEqual(self.app.find_movie(7).title, "Saved")
        self.assertIsNone(self.app.find_movie(8))

    async def test_close_stops_reacting_to_auth_events(self):
        await self.app.sign_up("uma@example.com", "password")
        self.app.close()
        await self.app.store.sign_out()
        self.assertEqual(self.app.watchlist.state, WatchlistState.EMPTY)
        self.assertEqual((await self.app.watchlist.load("anyone")).reason, "cancelled")


class TestAppStateCache(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.fx = await StoreFixture().start()
        self.built = []

    async def asyncTearDown(self):
        await self.fx.close()

    def build(self, view_id):
        app = AppState(self.fx.local(str(view_id)), store=self.fx.store(str(view_id)),
                       catalog=mock.Mock(spec=MovieCatalog))
        self.built.append(app)
        return app

    async def test_least_recently_used_state_is_closed(self):
        cache = AppStateCache(self.build, max_size=2)
        first = await cache.get(1)
        await cache.get(2)
        self.assertIs(await cache.get(1), first)
        await cache.get(3)

        self.assertEqual(len(cache), 2)
        self.assertIn(1, cache)
        self.assertNotIn(2, cache)
        evicted = self.built[1]
        self.assertEqual((await evicted.watchlist.load("anyone")).reason, "cancelled")
        self.assertTrue(first.started)
        cache.close()
        self.assertEqual(len(cache), 0)

    async def test_evicted_view_restores_its_session(self):
        cache = AppStateCache(self.build, max_size=1)
        app = await cache.get("chat")
        await app.sign_up("val@example.com", "password")
        await app.add(make_movie(9, "Kept"))
        await cache.get("other")
        self.assertNotIn("chat", cache)

        again = await cache.get("chat")
        self.assertIsNot(again, app)
        self.assertTrue(again.signed_in)
        self.assertEqual([e.movie_id for e in again.entries], [9])
        cache.close()


if __name__ == "__main__":
    unittest.main()

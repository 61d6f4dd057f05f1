import threading
import unittest
from unittest import mock

from sqlalchemy import update

import models
import store
from errors import AlreadyExists, InvalidCredentials, InvalidInput, NotFound, Unauthenticated
from store import hash_password, verify_password, USER_UPDATED
from support import StoreFixture, make_movie


class TestPasswords(unittest.TestCase):
    def test_hash_and_verify(self):
        stored = hash_password("s3cret!")
        self.assertTrue(stored.startswith("pbkdf2_sha256$"))
        self.assertTrue(verify_password("s3cret!", stored))
        self.assertFalse(verify_password("wrong", stored))
        self.assertFalse(verify_password("s3cret!", "garbage"))
        self.assertFalse(verify_password("s3cret!", "pbkdf2_sha256$lots$salt$hash"))
        self.assertFalse(verify_password("s3cret!", "pbkdf2_sha256$1000$%%$%%"))
        self.assertFalse(verify_password("s3cret!", None))
        self.assertNotEqual(hash_password("s3cret!"), stored)


class TestRemoteStore(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.fx = await StoreFixture().start()
        self.store = self.fx.store()

    async def asyncTearDown(self):
        await self.fx.close()

    async def test_sign_up_validation_and_duplicates(self):
        with self.assertRaises(InvalidInput):
            await self.store.sign_up("not-an-email", "password")
        with self.assertRaises(InvalidInput):
            await self.store.sign_up("kim@example.com", "123")
        await self.store.sign_up("kim@example.com", "password")
        with self.assertRaises(AlreadyExists):
            await self.fx.store("other").sign_up("KIM@example.com", "password")

    async def test_sign_in_errors(self):
        with self.assertRaises(InvalidCredentials):
            await self.store.sign_in("nobody@example.com", "password")

    async def test_sign_in_records_last_sign_in(self):
        await self.store.sign_up("lee@example.com", "password")
        session = await self.store.sign_in("lee@example.com", "password")
        self.assertIsNotNone(session.last_sign_in_at)
        self.assertIsNotNone(session.created_at)
        self.assertEqual((await self.store.get_session()).access_token, session.access_token)

    async def test_password_hashing_runs_off_the_event_loop(self):
        loop_thread = threading.get_ident()
        threads = []

        def record(func):
            def wrapper(*args):
                threads.append(threading.get_ident())
                return func(*args)
            return wrapper

        with mock.patch("store.hash_password", record(store.hash_password)), \
                mock.patch("store.verify_password", record(store.verify_password)):
            await self.store.sign_up("ray@example.com", "password")
        self.assertEqual(len(threads), 2)
        self.assertNotIn(loop_thread, threads)

    async def test_corrupt_password_hash_is_invalid_credentials(self):
        await self.store.sign_up("zoe@example.com", "password")
        async with self.fx.session_factory() as db:
            await db.execute(update(models.User).values(password_hash="pbkdf2_sha256$many$!!$??"))
            await db.commit()
        with self.assertRaises(InvalidCredentials):
            await self.store.sign_in("zoe@example.com", "password")

    async def test_unknown_token_is_forgotten(self):
        self.store.local.set("auth.token", "bogus")
        self.assertIsNone(await self.store.get_session())
        self.assertIsNone(self.store.local.get("auth.token"))

    async def test_update_user_metadata(self):
        events = []
        self.store.on_auth_state_change(lambda event, session: events.append((event, session)))
        with self.assertRaises(Unauthenticated):
            await self.store.update_user_metadata(display_name="X")
        await self.store.sign_up("mia@example.com", "password", "Mia")
        session = await self.store.update_user_metadata(display_name="Mia W.")
        self.assertEqual(session.display_name, "Mia W.")
        self.assertEqual(events[-1][0], USER_UPDATED)
        self.assertEqual((await self.store.get_session()).user_metadata["display_name"], "Mia W.")

    async def test_upsert_movie_is_idempotent(self):
        movie = make_movie(10, "Heat", genres=[{"name": "Crime"}])
        await self.store.upsert_movie(movie)
        await self.store.upsert_movie(movie)
        async with self.fx.session_factory() as db:
            row = await db.get(models.Movie, 10)
        self.assertEqual(row.title, "Heat")
        self.assertEqual(row.genres, ["Crime"])

    async def test_watchlist_uniqueness_is_enforced_by_the_store(self):
        session = await self.store.sign_up("ned@example.com", "password")
        await self.store.upsert_movie(make_movie(1))
        await self.store.insert_watchlist_entry(session.user_id, 1)
        with self.assertRaises(AlreadyExists):
            await self.store.insert_watchlist_entry(session.user_id, 1)

    async def test_update_missing_entry(self):
        session = await self.store.sign_up("ola@example.com", "password")
        with self.assertRaises(NotFound):
            await self.store.update_watchlist_entry(session.user_id, 1, {"watched": True})


if __name__ == "__main__":
    unittest.main()

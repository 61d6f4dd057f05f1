import unittest
from unittest import mock

from entities import PrivacyLevel
from errors import RemoteUnavailable
from profiles import ProfileService
from support import StoreFixture


class TestProfileService(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.fx = await StoreFixture().start()
        self.store = self.fx.store()
        self.session = await self.store.sign_up("pat@example.com", "password")
        self.profiles = ProfileService(self.store)

    async def asyncTearDown(self):
        await self.fx.close()

    async def test_requires_session(self):
        self.assertEqual((await self.profiles.load(None)).reason, "unauthenticated")

    async def test_defaults_before_first_save(self):
        result = await self.profiles.load(self.session)
        self.assertTrue(result.ok)
        profile = result.value
        self.assertEqual(profile.display_name, "pat")
        self.assertEqual(profile.favorite_genres, [])
        self.assertEqual(profile.privacy_level, PrivacyLevel.PUBLIC)
        self.assertIsNone(await self.store.fetch_profile(self.session.user_id))

    async def test_save_inserts_then_updates(self):
        profile = (await self.profiles.load(self.session)).value
        first = await self.profiles.save(self.session, profile.with_changes(
            username="pat", bio="  Noir fan ", favorite_genres=["Crime", "Drama"], privacy_level="friends"))
        self.assertTrue(first.ok)
        second = await self.profiles.save(self.session, first.value.with_changes(location="Lyon", bio=""))
        self.assertTrue(second.ok)

        row = await self.store.fetch_profile(self.session.user_id)
        self.assertEqual(row.username, "pat")
        self.assertIsNone(row.bio)
        self.assertEqual(row.location, "Lyon")
        self.assertEqual(row.favorite_genres, ["Crime", "Drama"])
        self.assertEqual(row.privacy_level, "friends")

    async def test_validation(self):
        profile = (await self.profiles.load(self.session)).value
        too_many = ["Action", "Comedy", "Drama", "Horror", "War", "Western"]
        cases = [
            profile.with_changes(favorite_genres=too_many),
            profile.with_changes(favorite_genres=["Cooking"]),
            profile.with_changes(username="x" * 31),
            profile.with_changes(bio="x" * 501),
            profile.with_changes(privacy_level="secret"),
            profile.with_changes(birth_date="31/12/1990"),
            profile.with_changes(website="example.com"),
        ]
        for case in cases:
            self.assertEqual((await self.profiles.save(self.session, case)).reason, "invalid_input")

    async def test_username_taken(self):
        other = self.fx.store("other")
        other_session = await other.sign_up("quinn@example.com", "password")
        other_profiles = ProfileService(other)
        taken = (await other_profiles.load(other_session)).value.with_changes(username="cinephile")
        self.assertTrue((await other_profiles.save(other_session, taken)).ok)

        mine = (await self.profiles.load(self.session)).value.with_changes(username="cinephile")
        self.assertEqual((await self.profiles.save(self.session, mine)).reason, "invalid_input")

    async def test_display_name_change_updates_account(self):
        profile = (await self.profiles.load(self.session)).value
        await self.profiles.save(self.session, profile.with_changes(display_name="Pat Q."))
        self.assertEqual((await self.store.get_session()).display_name, "Pat Q.")

    async def test_metadata_failure_does_not_fail_save(self):
        profile = (await self.profiles.load(self.session)).value
        failing = mock.AsyncMock(side_effect=RemoteUnavailable("auth down"))
        with mock.patch.object(self.store, "update_user_metadata", failing):
            with self.assertLogs("profiles", level="ERROR"):
                result = await self.profiles.save(self.session, profile.with_changes(display_name="Pat"))
        self.assertTrue(result.ok)


if __name__ == "__main__":
    unittest.main()

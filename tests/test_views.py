import unittest
from datetime import datetime, timezone

import views
from entities import WatchlistEntry
from errors import Result, Unauthenticated, RemoteUnavailable
from support import make_movie


class TestViews(unittest.TestCase):
    def test_unauthenticated_prompts_sign_in(self):
        text = views.notify(Result.failure(Unauthenticated("nope")), "ok")
        self.assertEqual(text, views.SIGN_IN_PROMPT)

    def test_transient_failure_is_a_notification(self):
        self.assertIn("down", views.notify(Result.failure(RemoteUnavailable("down")), "ok"))
        self.assertEqual(views.notify(Result.success(), "ok"), "ok")

    def test_movie_text_escapes_and_shows_personal_fields(self):
        movie = make_movie(1, "Tom & Jerry", vote_average=7.25, overview="<b>cat</b>")
        entry = WatchlistEntry(movie=movie, user_id="u", entry_id=3, watched=True,
                               personal_rating=9.0, personal_notes="fun",
                               added_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        text = views.movie_text(movie, entry)
        self.assertIn("Tom &amp; Jerry", text)
        self.assertIn("&lt;b&gt;cat&lt;/b&gt;", text)
        self.assertIn("7.2", text)
        self.assertIn("Your rating: 9/10", text)
        self.assertIn("✅ Watched", text)

    def test_keyboards(self):
        movie = make_movie(1, "Heat")
        add_kb = views.movie_kb(movie)
        self.assertEqual(add_kb.inline_keyboard[0][0].callback_data, "add_1")
        local_kb = views.movie_kb(movie, WatchlistEntry(movie=movie), True)
        self.assertEqual([b.callback_data for row in local_kb.inline_keyboard for b in row], ["remove_1"])
        results = views.results_kb([movie], "popularity.desc")
        data = [b.callback_data for row in results.inline_keyboard for b in row]
        self.assertIn("movie_1", data)
        self.assertNotIn("sort_popularity.desc", data)
        self.assertIn("sort_alphabet.asc", data)

    def test_list_text(self):
        self.assertIn("empty", views.list_text([], 0, "all", "added"))
        entries = [WatchlistEntry(movie=make_movie(1)), WatchlistEntry(movie=make_movie(2))]
        text = views.list_text(entries[:1], 2, "watched", "title")
        self.assertIn("Showing 1 of 2", text)


if __name__ == "__main__":
    unittest.main()

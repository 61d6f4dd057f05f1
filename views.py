from html import escape

from aiogram.types import ReplyKeyboardMarkup, KeyboardButton, InlineKeyboardMarkup, InlineKeyboardButton

from catalog import SORT_OPTIONS
from errors import Result, Unauthenticated, InvalidCredentials
from watchlist import FILTERS, SORTS

BTN_SEARCH = "🔎 Search"
BTN_TRENDING = "🔥 Trending"
BTN_LIST = "📝 Your List"
BTN_PROFILE = "👤 Profile"
BTN_THEME = "🌓 Theme"
BTN_SIGN_IN = "🔑 Sign in"
BTN_SIGN_OUT = "🚪 Sign out"

SORT_LABELS = {
    "popularity.desc": "Popularity ↓",
    "popularity.asc": "Popularity ↑",
    "vote_average.desc": "Rating ↓",
    "vote_average.asc": "Rating ↑",
    "release_date.desc": "Newest",
    "release_date.asc": "Oldest",
    "alphabet.asc": "A-Z",
    "alphabet.desc": "Z-A",
}
FILTER_LABELS = {
    "all": "All",
    "high-rated": "7+",
    "recent": "2020+",
    "classics": "Pre-2000",
    "watched": "Watched",
    "unwatched": "Unwatched",
}
LIST_SORT_LABELS = {"added": "Added", "title": "Title", "rating": "Rating", "release_date": "Release"}

SIGN_IN_PROMPT = "Please sign in first: /signin (or create an account with /signup)."


def main_kb(signed_in: bool) -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        keyboard=[
            [KeyboardButton(text=BTN_SEARCH), KeyboardButton(text=BTN_TRENDING)],
            [KeyboardButton(text=BTN_LIST), KeyboardButton(text=BTN_PROFILE)],
            [KeyboardButton(text=BTN_THEME), KeyboardButton(text=BTN_SIGN_OUT if signed_in else BTN_SIGN_IN)],
        ],
        resize_keyboard=True
    )


def movie_label(movie) -> str:
    year = movie.release_year or "—"
    return f"{movie.title} ({year})"


def results_kb(movies, sort_option: str = None, prefix: str = "movie") -> InlineKeyboardMarkup:
    rows = [[InlineKeyboardButton(text=movie_label(m), callback_data=f"{prefix}_{m.id}")] for m in movies]
    if sort_option:
        options = [o for o in SORT_OPTIONS if o != sort_option]
        for i in range(0, len(options), 4):
            rows.append([
                InlineKeyboardButton(text=SORT_LABELS[o], callback_data=f"sort_{o}") for o in options[i:i + 4]
            ])
    return InlineKeyboardMarkup(inline_keyboard=rows)


def movie_text(movie, entry=None) -> str:
    text = f"🎥 <b>{escape(movie.title)}</b>\nYear: {movie.release_year or '—'}"
    if movie.genres:
        text += f"\nGenres: {escape(', '.join(movie.genres))}"
    if movie.vote_average > 0:
        text += f"\n⭐ {movie.vote_average:.1f} ({movie.vote_count} votes)"
    if movie.runtime:
        text += f"\nRuntime: {movie.runtime} min"
    if movie.overview:
        text += f"\n\n{escape(movie.overview)}"
    poster = movie.poster_url()
    if poster:
        text += f"\n<a href='{poster}'>Poster</a>"
    if entry is not None:
        text += "\n\n" + ("✅ Watched" if entry.watched else "❌ Not watched yet")
        if entry.personal_rating is not None:
            text += f"\nYour rating: {entry.personal_rating:g}/10"
        if entry.personal_notes:
            text += f"\nYour notes: {escape(entry.personal_notes)}"
    return text


def movie_kb(movie, entry=None, on_list: bool = False) -> InlineKeyboardMarkup:
    if not on_list:
        return InlineKeyboardMarkup(inline_keyboard=[
            [InlineKeyboardButton(text="➕ Add to my list", callback_data=f"add_{movie.id}")],
        ])
    rows = [[InlineKeyboardButton(text="🗑 Remove", callback_data=f"remove_{movie.id}")]]
    if entry is not None and entry.entry_id is not None:
        rows[0].append(InlineKeyboardButton(
            text="↩️ Mark unwatched" if entry.watched else "✅ Mark watched",
            callback_data=f"watched_{movie.id}"))
        rows.append([
            InlineKeyboardButton(text="⭐ Rate", callback_data=f"rate_{movie.id}"),
            InlineKeyboardButton(text="📝 Notes", callback_data=f"notes_{movie.id}"),
        ])
    return InlineKeyboardMarkup(inline_keyboard=rows)


def list_text(shown, total: int, filter_key: str, sort_key: str) -> str:
    if total == 0:
        return "Your list is empty. Search for movies to add some!"
    noun = "movie" if total == 1 else "movies"
    text = (f"📝 {total} {noun} in your collection\n"
            f"Filter: {FILTER_LABELS[filter_key]} · Sort: {LIST_SORT_LABELS[sort_key]}\n"
            f"Showing {len(shown)} of {total}")
    if not shown:
        text += "\n\nNo movies match this filter."
    return text


def list_kb(shown, filter_key: str, sort_key: str) -> InlineKeyboardMarkup:
    rows = []
    for entry in shown:
        mark = "✅ " if entry.watched else ""
        rows.append([InlineKeyboardButton(text=mark + movie_label(entry.movie), callback_data=f"entry_{entry.movie_id}")])
    rows.append([
        InlineKeyboardButton(text=("• " if f == filter_key else "") + FILTER_LABELS[f], callback_data=f"lf_{f}")
        for f in FILTERS[:3]
    ])
    rows.append([
        InlineKeyboardButton(text=("• " if f == filter_key else "") + FILTER_LABELS[f], callback_data=f"lf_{f}")
        for f in FILTERS[3:]
    ])
    rows.append([
        InlineKeyboardButton(text=("• " if s == sort_key else "") + LIST_SORT_LABELS[s], callback_data=f"ls_{s}")
        for s in SORTS
    ])
    return InlineKeyboardMarkup(inline_keyboard=rows)


def profile_text(profile, session) -> str:
    lines = [f"👤 <b>{escape(profile.display_name or session.display_name)}</b>"]
    if profile.username:
        lines.append(f"@{escape(profile.username)}")
    if profile.bio:
        lines.append(escape(profile.bio))
    if profile.favorite_genres:
        lines.append(f"Favorite genres: {escape(', '.join(profile.favorite_genres))}")
    if profile.location:
        lines.append(f"Location: {escape(profile.location)}")
    if profile.website:
        lines.append(f"Website: {escape(profile.website)}")
    if profile.birth_date:
        lines.append(f"Birth date: {escape(profile.birth_date)}")
    lines.append(f"Privacy: {profile.privacy_level.value}")
    lines.append(f"\nEmail: {escape(session.email)}")
    if session.created_at:
        lines.append(f"Account created: {session.created_at:%Y-%m-%d}")
    if session.last_sign_in_at:
        lines.append(f"Last sign in: {session.last_sign_in_at:%Y-%m-%d}")
    return "\n".join(lines)


def profile_kb() -> InlineKeyboardMarkup:
    fields = [("Username", "username"), ("Display name", "display_name"), ("Bio", "bio"),
              ("Genres", "favorite_genres"), ("Location", "location"), ("Website", "website"),
              ("Birth date", "birth_date"), ("Avatar", "avatar_url"), ("Privacy", "privacy_level")]
    rows = [
        [InlineKeyboardButton(text=label, callback_data=f"pf_{name}") for label, name in fields[i:i + 3]]
        for i in range(0, len(fields), 3)
    ]
    return InlineKeyboardMarkup(inline_keyboard=rows)


def failure_text(result: Result) -> str:
    if isinstance(result.error, Unauthenticated):
        return SIGN_IN_PROMPT
    if isinstance(result.error, InvalidCredentials):
        return "Wrong email or password. Try /signin again."
    return f"⚠️ {result.error}"


def notify(result: Result, success_text: str) -> str:
    return success_text if result.ok else failure_text(result)

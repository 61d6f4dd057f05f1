import asyncio
import contextlib
import logging

from aiogram import Bot, Dispatcher, types, F
from aiogram.exceptions import TelegramBadRequest
from aiogram.filters import Command
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup

import views
from app_state import AppState, AppStateCache
from config import LOG_LEVEL, require_bot_token
from database import init_db, engine
from entities import GENRE_NAMES, PrivacyLevel
from errors import Result
from watchlist import FILTERS, SORTS

logger = logging.getLogger(__name__)

dp = Dispatcher()

# One application state per chat, least recently used closed first
apps = AppStateCache()


async def get_app(chat_id: int) -> AppState:
    return await apps.get(chat_id)


class SignInStates(StatesGroup):
    waiting_for_email = State()
    waiting_for_password = State()


class SignUpStates(StatesGroup):
    waiting_for_email = State()
    waiting_for_password = State()
    waiting_for_name = State()


class SearchStates(StatesGroup):
    waiting_for_query = State()


class EntryStates(StatesGroup):
    waiting_for_rating = State()
    waiting_for_notes = State()


class ProfileStates(StatesGroup):
    waiting_for_value = State()


def ensure_signed_in(func):
    async def wrapper(event, *args, **kwargs):
        chat_id = event.message.chat.id if isinstance(event, types.CallbackQuery) else event.chat.id
        app = await get_app(chat_id)
        if not app.signed_in:
            if isinstance(event, types.CallbackQuery):
                await event.answer(views.SIGN_IN_PROMPT, show_alert=True)
            else:
                await event.answer(views.SIGN_IN_PROMPT, reply_markup=views.main_kb(False))
            return
        return await func(event, *args, app=app, **kwargs)
    return wrapper


def _id_from(callback: types.CallbackQuery) -> int:
    return int(callback.data.split("_", 1)[1])


async def _reply_result(callback: types.CallbackQuery, result: Result, success_text: str):
    await callback.answer(views.notify(result, success_text), show_alert=not result.ok)


@dp.message(Command("start"))
async def cmd_start(message: types.Message, state: FSMContext):
    await state.clear()
    app = await get_app(message.chat.id)
    if app.signed_in:
        greeting = f"Welcome back, {app.session.display_name}! {len(app.entries)} movies on your list."
    else:
        greeting = "MovieNote: discover, track, and organize your favorite movies.\nSign in to sync your list."
    await message.answer(greeting, reply_markup=views.main_kb(app.signed_in))


# ----- session

@dp.message(Command("signin"))
@dp.message(F.text == views.BTN_SIGN_IN)
async def ask_email(message: types.Message, state: FSMContext):
    await state.clear()
    await message.answer("Enter your email:")
    await state.set_state(SignInStates.waiting_for_email)


@dp.message(SignInStates.waiting_for_email)
async def ask_password(message: types.Message, state: FSMContext):
    await state.update_data(email=(message.text or "").strip())
    await message.answer("Enter your password:")
    await state.set_state(SignInStates.waiting_for_password)


@dp.message(SignInStates.waiting_for_password)
async def do_sign_in(message: types.Message, state: FSMContext):
    password = message.text or ""
    with contextlib.suppress(TelegramBadRequest):
        await message.delete()
    data = await state.get_data()
    await state.clear()
    app = await get_app(message.chat.id)
    result = await app.sign_in(data.get("email", ""), password)
    text = views.notify(result, f"Signed in as {result.value.display_name}!" if result.ok else "")
    await message.answer(text, reply_markup=views.main_kb(app.signed_in))


@dp.message(Command("signup"))
async def ask_signup_email(message: types.Message, state: FSMContext):
    await state.clear()
    await message.answer("Enter the email for your new account:")
    await state.set_state(SignUpStates.waiting_for_email)


@dp.message(SignUpStates.waiting_for_email)
async def ask_signup_password(message: types.Message, state: FSMContext):
    await state.update_data(email=(message.text or "").strip())
    await message.answer("Choose a password (at least 6 characters):")
    await state.set_state(SignUpStates.waiting_for_password)


@dp.message(SignUpStates.waiting_for_password)
async def ask_signup_name(message: types.Message, state: FSMContext):
    await state.update_data(password=message.text or "")
    with contextlib.suppress(TelegramBadRequest):
        await message.delete()
    await message.answer("How should we call you? (send - to skip)")
    await state.set_state(SignUpStates.waiting_for_name)


@dp.message(SignUpStates.waiting_for_name)
async def do_sign_up(message: types.Message, state: FSMContext):
    name = (message.text or "").strip()
    data = await state.get_data()
    await state.clear()
    app = await get_app(message.chat.id)
    result = await app.sign_up(data.get("email", ""), data.get("password", ""), None if name == "-" else name)
    text = views.notify(result, f"Welcome, {result.value.display_name}! Your account is ready." if result.ok else "")
    await message.answer(text, reply_markup=views.main_kb(app.signed_in))


@dp.message(Command("signout"))
@dp.message(F.text == views.BTN_SIGN_OUT)
async def do_sign_out(message: types.Message, state: FSMContext):
    await state.clear()
    app = await get_app(message.chat.id)
    await app.sign_out()
    await message.answer("You have been signed out.", reply_markup=views.main_kb(False))


# ----- search

@dp.message(Command("search"))
@dp.message(F.text == views.BTN_SEARCH)
async def ask_query(message: types.Message, state: FSMContext):
    await state.clear()
    await message.answer("Enter a movie title to search for:")
    await state.set_state(SearchStates.waiting_for_query)


@dp.message(SearchStates.waiting_for_query)
async def show_results(message: types.Message, state: FSMContext):
    query = (message.text or "").strip()
    if not query:
        await message.answer("Please type a title.")
        return
    await state.clear()
    app = await get_app(message.chat.id)
    movies = await app.search_movies(query)
    if not movies:
        await message.answer("No movies found. Try another title.")
        return
    await message.answer(f"Found {len(movies)} {'movie' if len(movies) == 1 else 'movies'}:",
                         reply_markup=views.results_kb(movies, app.search.sort_option))


@dp.callback_query(F.data.startswith("sort_"))
async def resort_results(callback: types.CallbackQuery):
    app = await get_app(callback.message.chat.id)
    movies = app.sort_results(callback.data.split("_", 1)[1])
    await callback.message.edit_reply_markup(reply_markup=views.results_kb(movies, app.search.sort_option))
    await callback.answer(f"Sorted: {views.SORT_LABELS[app.search.sort_option]}")


@dp.message(Command("trending"))
@dp.message(F.text == views.BTN_TRENDING)
async def show_trending(message: types.Message, state: FSMContext):
    await state.clear()
    app = await get_app(message.chat.id)
    movies = await app.trending()
    if not movies:
        await message.answer("Could not load trending movies right now.")
        return
    await message.answer("🔥 Trending this week:", reply_markup=views.results_kb(movies))


@dp.callback_query(F.data.startswith("movie_"))
async def show_movie(callback: types.CallbackQuery):
    app = await get_app(callback.message.chat.id)
    movie = app.find_movie(_id_from(callback))
    if movie is None:
        await callback.answer("This result has expired. Search again.", show_alert=True)
        return
    entry = next((e for e in app.entries if e.movie_id == movie.id), None)
    await callback.message.answer(views.movie_text(movie, entry), parse_mode="HTML",
                                  reply_markup=views.movie_kb(movie, entry, entry is not None))
    await callback.answer()


@dp.callback_query(F.data.startswith("add_"))
async def add_movie(callback: types.CallbackQuery):
    app = await get_app(callback.message.chat.id)
    movie = app.find_movie(_id_from(callback))
    if movie is None:
        await callback.answer("This result has expired. Search again.", show_alert=True)
        return
    result = await app.add(movie)
    await _reply_result(callback, result, f"{movie.title} added to your list!")
    if result.ok:
        await callback.message.edit_reply_markup(reply_markup=views.movie_kb(movie, result.value, True))


# ----- list

async def _render_list(app: AppState, state: FSMContext):
    data = await state.get_data()
    filter_key = data.get("list_filter", "all")
    sort_key = data.get("list_sort", "added")
    shown = app.watchlist_view(filter_key, sort_key)
    return views.list_text(shown, len(app.entries), filter_key, sort_key), views.list_kb(shown, filter_key, sort_key)


@dp.message(Command("list"))
@dp.message(F.text == views.BTN_LIST)
async def show_list(message: types.Message, state: FSMContext):
    app = await get_app(message.chat.id)
    text, kb = await _render_list(app, state)
    if not app.signed_in and app.local_fallback:
        text += "\n\n(This list is stored on this chat only. Sign in to keep a synced list.)"
    await message.answer(text, reply_markup=kb)


@dp.callback_query(F.data.startswith("lf_") | F.data.startswith("ls_"))
async def change_list_view(callback: types.CallbackQuery, state: FSMContext):
    kind, value = callback.data.split("_", 1)
    if (kind == "lf" and value not in FILTERS) or (kind == "ls" and value not in SORTS):
        await callback.answer()
        return
    await state.update_data(**{"list_filter" if kind == "lf" else "list_sort": value})
    app = await get_app(callback.message.chat.id)
    text, kb = await _render_list(app, state)
    with contextlib.suppress(TelegramBadRequest):
        await callback.message.edit_text(text, reply_markup=kb)
    await callback.answer()


@dp.callback_query(F.data.startswith("entry_"))
async def show_entry(callback: types.CallbackQuery):
    app = await get_app(callback.message.chat.id)
    movie_id = _id_from(callback)
    entry = next((e for e in app.entries if e.movie_id == movie_id), None)
    if entry is None:
        await callback.answer("This movie is no longer on your list.", show_alert=True)
        return
    await callback.message.answer(views.movie_text(entry.movie, entry), parse_mode="HTML",
                                  reply_markup=views.movie_kb(entry.movie, entry, True))
    await callback.answer()


@dp.callback_query(F.data.startswith("remove_"))
async def remove_movie(callback: types.CallbackQuery):
    app = await get_app(callback.message.chat.id)
    movie_id = _id_from(callback)
    movie = app.find_movie(movie_id)
    result = await app.remove(movie or movie_id)
    title = movie.title if movie else "Movie"
    await _reply_result(callback, result, f"{title} removed from your list")
    if result.ok and movie is not None:
        await callback.message.edit_reply_markup(reply_markup=views.movie_kb(movie))


@dp.callback_query(F.data.startswith("watched_"))
@ensure_signed_in
async def toggle_watched(callback: types.CallbackQuery, app: AppState, **kwargs):
    entry = app.watchlist.get(_id_from(callback))
    if entry is None:
        await callback.answer("This movie is no longer on your list.", show_alert=True)
        return
    result = await app.update(entry.movie, watched=not entry.watched)
    await _reply_result(callback, result, "Marked as watched!" if not entry.watched else "Marked as not watched")
    if result.ok:
        await callback.message.edit_text(views.movie_text(entry.movie, result.value), parse_mode="HTML",
                                         reply_markup=views.movie_kb(entry.movie, result.value, True))


@dp.callback_query(F.data.startswith("rate_"))
@ensure_signed_in
async def ask_rating(callback: types.CallbackQuery, state: FSMContext, app: AppState, **kwargs):
    await state.update_data(entry_movie_id=_id_from(callback))
    await callback.message.answer("Enter your rating for this movie (1-10, or - to clear):")
    await state.set_state(EntryStates.waiting_for_rating)
    await callback.answer()


@dp.message(EntryStates.waiting_for_rating)
async def save_rating(message: types.Message, state: FSMContext):
    text = (message.text or "").strip()
    rating = None
    if text != "-":
        try:
            rating = float(text.replace(",", "."))
        except ValueError:
            await message.answer("Please enter a number from 1 to 10.")
            return
    data = await state.get_data()
    app = await get_app(message.chat.id)
    result = await app.update(data.get("entry_movie_id", 0), personal_rating=rating)
    if not result.ok and result.reason == "invalid_input":
        await message.answer(views.failure_text(result))
        return
    await state.set_state(None)
    await message.answer(views.notify(result, "Rating cleared." if rating is None else f"Your rating {rating:g}/10 is saved!"))


@dp.callback_query(F.data.startswith("notes_"))
@ensure_signed_in
async def ask_notes(callback: types.CallbackQuery, state: FSMContext, app: AppState, **kwargs):
    await state.update_data(entry_movie_id=_id_from(callback))
    await callback.message.answer("Enter your notes for this movie (up to 500 characters, or - to clear):")
    await state.set_state(EntryStates.waiting_for_notes)
    await callback.answer()


@dp.message(EntryStates.waiting_for_notes)
async def save_notes(message: types.Message, state: FSMContext):
    notes = (message.text or "").strip()
    data = await state.get_data()
    app = await get_app(message.chat.id)
    result = await app.update(data.get("entry_movie_id", 0), personal_notes=None if notes == "-" else notes)
    if not result.ok and result.reason == "invalid_input":
        await message.answer(views.failure_text(result))
        return
    await state.set_state(None)
    await message.answer(views.notify(result, "Notes saved!"))


# ----- profile & theme

@dp.message(Command("profile"))
@dp.message(F.text == views.BTN_PROFILE)
@ensure_signed_in
async def show_profile(message: types.Message, state: FSMContext, app: AppState, **kwargs):
    await state.clear()
    result = await app.load_profile()
    if not result.ok:
        await message.answer(views.failure_text(result))
        return
    await message.answer(views.profile_text(result.value, app.session), parse_mode="HTML",
                         reply_markup=views.profile_kb())


@dp.callback_query(F.data.startswith("pf_"))
@ensure_signed_in
async def ask_profile_value(callback: types.CallbackQuery, state: FSMContext, app: AppState, **kwargs):
    field = callback.data.split("_", 1)[1]
    if field == "favorite_genres":
        hint = f"Send up to 5 genres separated by commas. Options: {', '.join(GENRE_NAMES)}"
    elif field == "privacy_level":
        hint = f"Send one of: {', '.join(p.value for p in PrivacyLevel)}"
    elif field == "birth_date":
        hint = "Send your birth date as YYYY-MM-DD"
    else:
        hint = f"Send the new value for {field.replace('_', ' ')}"
    await state.update_data(profile_field=field)
    await callback.message.answer(hint + " (or - to clear)")
    await state.set_state(ProfileStates.waiting_for_value)
    await callback.answer()


@dp.message(ProfileStates.waiting_for_value)
async def save_profile_value(message: types.Message, state: FSMContext):
    app = await get_app(message.chat.id)
    data = await state.get_data()
    field = data.get("profile_field")
    loaded = await app.load_profile()
    if not loaded.ok:
        await state.set_state(None)
        await message.answer(views.failure_text(loaded))
        return
    raw = (message.text or "").strip()
    if field == "favorite_genres":
        value = [] if raw == "-" else [g.strip() for g in raw.split(",") if g.strip()]
    elif field == "privacy_level":
        value = PrivacyLevel.PUBLIC.value if raw == "-" else raw.lower()
    else:
        value = "" if raw == "-" else raw
    result = await app.save_profile(loaded.value.with_changes(**{field: value}))
    if not result.ok and result.reason == "invalid_input":
        await message.answer(views.failure_text(result) + "\nTry again:")
        return
    await state.set_state(None)
    await message.answer(views.notify(result, "Profile saved successfully!"))


@dp.message(Command("theme"))
@dp.message(F.text == views.BTN_THEME)
async def toggle_theme(message: types.Message):
    app = await get_app(message.chat.id)
    theme = app.toggle_theme()
    await message.answer(f"Theme switched to {theme}.")


@dp.message()
async def handle_text(message: types.Message):
    app = await get_app(message.chat.id)
    await message.answer("Please use the menu buttons.", reply_markup=views.main_kb(app.signed_in))


async def main():
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    bot = Bot(token=require_bot_token())
    await init_db()
    logger.info("MovieNote bot starting")
    try:
        await dp.start_polling(bot)
    finally:
        apps.close()
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())

import logging
from datetime import date
from typing import Optional

from entities import GENRE_NAMES, PrivacyLevel, Profile, UserSession
from errors import MovieNoteError, AlreadyExists, InvalidInput, NotFound, Result, Unauthenticated
from store import RemoteStore

logger = logging.getLogger(__name__)

MAX_FAVORITE_GENRES = 5
FIELD_LIMITS = {"username": 30, "display_name": 50, "bio": 500, "location": 100}


def _clean(value) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def profile_values(profile: Profile) -> dict:
    """Validate a profile and turn it into a user_profiles row (blanks become NULL)."""
    for name, limit in FIELD_LIMITS.items():
        if len((getattr(profile, name) or "").strip()) > limit:
            raise InvalidInput(f"{name.replace('_', ' ')} must be at most {limit} characters")
    genres = list(dict.fromkeys(profile.favorite_genres or []))
    if len(genres) > MAX_FAVORITE_GENRES:
        raise InvalidInput(f"pick at most {MAX_FAVORITE_GENRES} favorite genres")
    unknown = [g for g in genres if g not in GENRE_NAMES]
    if unknown:
        raise InvalidInput(f"unknown genre: {', '.join(unknown)}")
    try:
        privacy = PrivacyLevel(profile.privacy_level)
    except ValueError:
        raise InvalidInput(f"privacy level must be one of {', '.join(p.value for p in PrivacyLevel)}")
    birth_date = _clean(profile.birth_date)
    if birth_date:
        try:
            date.fromisoformat(birth_date)
        except ValueError:
            raise InvalidInput("birth date must look like YYYY-MM-DD")
    website = _clean(profile.website)
    if website and not website.startswith(("http://", "https://")):
        raise InvalidInput("website must start with http:// or https://")
    return {
        "id": profile.user_id,
        "username": _clean(profile.username),
        "display_name": _clean(profile.display_name),
        "avatar_url": _clean(profile.avatar_url),
        "bio": _clean(profile.bio),
        "favorite_genres": genres or None,
        "location": _clean(profile.location),
        "website": website,
        "birth_date": birth_date,
        "privacy_level": privacy.value,
    }


class ProfileService:
    def __init__(self, store: RemoteStore):
        self.store = store

    async def load(self, session: Optional[UserSession]) -> Result:
        if session is None:
            return Result.failure(Unauthenticated("sign in to view your profile"))
        try:
            row = await self.store.fetch_profile(session.user_id)
        except MovieNoteError as e:
            logger.error("Error loading profile for %s: %s", session.user_id, e)
            return Result.failure(e)
        return Result.success(Profile(
            user_id=session.user_id,
            username=getattr(row, "username", None) or "",
            display_name=getattr(row, "display_name", None) or session.display_name,
            avatar_url=getattr(row, "avatar_url", None) or "",
            bio=getattr(row, "bio", None) or "",
            favorite_genres=list(getattr(row, "favorite_genres", None) or []),
            location=getattr(row, "location", None) or "",
            website=getattr(row, "website", None) or "",
            birth_date=getattr(row, "birth_date", None) or "",
            privacy_level=PrivacyLevel(getattr(row, "privacy_level", None) or PrivacyLevel.PUBLIC.value),
        ))

    async def save(self, session: Optional[UserSession], profile: Profile) -> Result:
        if session is None:
            return Result.failure(Unauthenticated("sign in to edit your profile"))
        try:
            values = profile_values(profile.with_changes(user_id=session.user_id))
            try:
                await self.store.insert_profile(values)
            except AlreadyExists:
                logger.debug("Profile for %s exists, updating", session.user_id)
                await self.store.update_profile(session.user_id, values)
        except NotFound:
            # insert hit the unique username of somebody else's row
            return Result.failure(InvalidInput("username is already taken"))
        except MovieNoteError as e:
            logger.error("Failed to save profile for %s: %s", session.user_id, e)
            return Result.failure(e)

        display_name = values["display_name"] or ""
        if display_name != (session.user_metadata or {}).get("display_name", ""):
            try:
                await self.store.update_user_metadata(display_name=display_name)
            except MovieNoteError as e:
                logger.error("Failed to update auth metadata for %s: %s", session.user_id, e)
        return Result.success(profile.with_changes(user_id=session.user_id))

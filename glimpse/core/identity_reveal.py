"""
Identity reveal policy.

Decides which profile fields one user may see of another. Strangers and
pending likes only see anonymized attributes; real identity fields become
visible after a match, and only those the subject opted to reveal. The raw
phone number is never revealed to someone else.

Every function here is total: unknown input yields the most restrictive
field set instead of an exception.
"""
from enum import Enum
from typing import Any, Iterable, Optional

from loguru import logger

from glimpse.db.base import utcnow

ANONYMOUS_NICKNAME = "Anonymous"
AGE_BUCKET_YEARS = 5


class RelationshipState(str, Enum):
    NONE = "none"
    VIEWER_LIKED = "viewer_liked"
    SUBJECT_LIKED = "subject_liked"
    MATCHED = "matched"
    UNMATCHED = "unmatched"


class ProfileField(str, Enum):
    PSEUDONYM = "pseudonym"
    NICKNAME = "nickname"
    AGE_RANGE = "age_range"
    GROUP_MEMBERSHIP = "groups"
    BIO = "bio"
    REAL_NAME = "real_name"
    COMPANY = "company"
    SCHOOL = "school"
    REGION = "region"
    EXACT_LOCATION = "exact_location"
    PHONE_NUMBER = "phone_number"


ANONYMIZED_FIELDS = frozenset({
    ProfileField.PSEUDONYM,
    ProfileField.AGE_RANGE,
    ProfileField.GROUP_MEMBERSHIP,
})

MATCHED_BASE_FIELDS = frozenset({
    ProfileField.NICKNAME,
    ProfileField.BIO,
    ProfileField.AGE_RANGE,
    ProfileField.GROUP_MEMBERSHIP,
})

# Fields a matched subject may opt in to reveal
OPT_IN_FIELDS = frozenset({
    ProfileField.REAL_NAME,
    ProfileField.COMPANY,
    ProfileField.SCHOOL,
    ProfileField.REGION,
    ProfileField.EXACT_LOCATION,
})

ALL_FIELDS = frozenset(ProfileField)


def _parse_state(state: Any) -> Optional[RelationshipState]:
    if isinstance(state, RelationshipState):
        return state
    try:
        return RelationshipState(state)
    except (ValueError, TypeError):
        return None


def _parse_opt_ins(opt_ins: Any) -> frozenset:
    fields = set()
    try:
        for item in opt_ins or ():
            try:
                field = item if isinstance(item, ProfileField) else ProfileField(item)
            except (ValueError, TypeError):
                continue
            if field in OPT_IN_FIELDS:
                fields.add(field)
    except TypeError:
        return frozenset()
    return frozenset(fields)


def visible_fields(
    viewer_id: Any,
    subject_id: Any,
    relationship_state: Any,
    subject_opt_ins: Iterable[Any] = (),
) -> frozenset:
    """Fields of ``subject_id`` that ``viewer_id`` may see."""
    try:
        if viewer_id is not None and viewer_id == subject_id:
            return ALL_FIELDS

        state = _parse_state(relationship_state)
        if state is RelationshipState.MATCHED:
            return MATCHED_BASE_FIELDS | _parse_opt_ins(subject_opt_ins)
        if state is None:
            logger.warning(f"Unknown relationship state {relationship_state!r}, using anonymized fields")
        return ANONYMIZED_FIELDS
    except Exception as e:
        # Fail closed
        logger.error(f"Reveal policy failed for {viewer_id!r} -> {subject_id!r}: {e}")
        return ANONYMIZED_FIELDS


def mask_nickname(nickname: Optional[str]) -> str:
    """'Minji' -> 'M****'."""
    if not nickname:
        return ANONYMOUS_NICKNAME
    return nickname[0] + "*" * (len(nickname) - 1)


def age_range(birth_year: Optional[int], current_year: Optional[int] = None) -> Optional[str]:
    """Coarse age bucket such as '25-29'."""
    if not birth_year:
        return None
    current_year = current_year or utcnow().year
    age = current_year - birth_year
    if age < 0:
        return None
    low = age - age % AGE_BUCKET_YEARS
    return f"{low}-{low + AGE_BUCKET_YEARS - 1}"


def render_profile(user, fields: Iterable[ProfileField], group_ids: Iterable[str] = (), current_year: Optional[int] = None) -> dict:
    """Project a user onto the allowed fields."""
    fields = frozenset(fields)
    profile: dict[str, Any] = {"id": user.id}
    if ProfileField.PSEUDONYM in fields:
        profile["pseudonym"] = mask_nickname(user.nickname)
    if ProfileField.NICKNAME in fields:
        profile["nickname"] = user.nickname
    if ProfileField.AGE_RANGE in fields:
        profile["age_range"] = age_range(user.birth_year, current_year)
    if ProfileField.GROUP_MEMBERSHIP in fields:
        profile["groups"] = sorted(group_ids)

    for field in (
        ProfileField.BIO,
        ProfileField.REAL_NAME,
        ProfileField.COMPANY,
        ProfileField.SCHOOL,
        ProfileField.REGION,
        ProfileField.EXACT_LOCATION,
        ProfileField.PHONE_NUMBER,
    ):
        if field in fields:
            profile[field.value] = getattr(user, field.value)
    return profile

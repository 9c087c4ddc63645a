from .base import BaseRepository
from .user import user_repo
from .group_repo import group_member_repo
from .credit_repo import credit_repo
from .like_repo import like_repo
from .interest_repo import interest_repo
from . import cooldown_repo
from . import match_repo

__all__ = [
    "BaseRepository",
    "user_repo",
    "group_member_repo",
    "credit_repo",
    "like_repo",
    "interest_repo",
    "cooldown_repo",
    "match_repo",
]

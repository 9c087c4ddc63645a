from glimpse.db.models.user import User
from glimpse.db.models.group_member import GroupMember, MemberStatus
from glimpse.db.models.credit import CreditBalance, CreditPurchase
from glimpse.db.models.like import LikeEdge, LikeStatus, ACTIVE_LIKE_STATUSES
from glimpse.db.models.match import Match
from glimpse.db.models.cooldown import LikeCooldown
from glimpse.db.models.mismatch_report import MismatchReport
from glimpse.db.models.interest import InterestRegistration

__all__ = [
    "User",
    "GroupMember",
    "MemberStatus",
    "CreditBalance",
    "CreditPurchase",
    "LikeEdge",
    "LikeStatus",
    "ACTIVE_LIKE_STATUSES",
    "Match",
    "LikeCooldown",
    "MismatchReport",
    "InterestRegistration",
]

"""
Exception types for the like engine.

Expected outcomes (no credits, cooldown, ...) are returned as result values.
Only integrity violations and tampering are raised.
"""


class GlimpseIntegrityError(Exception):
    """Stored state broke an invariant. Indicates a bug or tampering."""


class DuplicateMatchError(GlimpseIntegrityError):
    """A second active match was about to be created for the same pair and group."""

    def __init__(self, user_a_id: str, user_b_id: str, group_id: str):
        self.user_a_id = user_a_id
        self.user_b_id = user_b_id
        self.group_id = group_id
        super().__init__(f"Active match already exists for {user_a_id}/{user_b_id} in group {group_id}")


class CreditIntegrityError(GlimpseIntegrityError):
    """A credit balance was observed below zero."""


class DecryptionError(Exception):
    """Envelope failed authentication or could not be parsed."""


class MatchAccessError(Exception):
    """Sender is not allowed to use the match channel."""

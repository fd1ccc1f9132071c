"""Caller identity as handed over by the upstream authenticator."""

from __future__ import annotations

from dataclasses import dataclass

from catmap.errors import ValidationError

USER_PREFIX = "USER#"
ANON_PREFIX = "ANON#"


@dataclass(frozen=True)
class Identity:
    """A verified user id, or an anonymous device id."""

    id: str
    anonymous: bool = False

    def __post_init__(self) -> None:
        if not self.id or not self.id.strip():
            msg = "Identity id must not be empty"
            raise ValidationError(msg)
        if "#" in self.id:
            msg = "Identity id may not contain '#'"
            raise ValidationError(msg)

    @property
    def key(self) -> str:
        """Storage key form: USER#<id> or ANON#<id>."""
        return f"{ANON_PREFIX if self.anonymous else USER_PREFIX}{self.id}"

    @property
    def user_id(self) -> str | None:
        """The user id, or None for anonymous callers (who never rank)."""
        return None if self.anonymous else self.id

    @classmethod
    def user(cls, user_id: str) -> Identity:
        return cls(user_id)

    @classmethod
    def anon(cls, anon_id: str) -> Identity:
        return cls(anon_id, anonymous=True)

    @classmethod
    def parse(cls, key: str) -> Identity:
        if key.startswith(USER_PREFIX):
            return cls.user(key.removeprefix(USER_PREFIX))
        if key.startswith(ANON_PREFIX):
            return cls.anon(key.removeprefix(ANON_PREFIX))
        msg = f"Unrecognised identity key {key!r}"
        raise ValidationError(msg)

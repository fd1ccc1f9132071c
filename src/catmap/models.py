"""Domain records as stored in the key-value tables.

Attribute names on the wire (and in storage) are camelCase; Python code uses
snake_case field names. ``to_item()`` produces the stored dict.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def now_iso(epoch: float | None = None) -> str:
    """Fixed-width, lexicographically sortable UTC timestamp."""
    moment = datetime.fromtimestamp(time.time() if epoch is None else epoch, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True, validate_default=True)

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> Record:
        return cls.model_validate(item)

    def to_item(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class CatStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ModerationDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class Cat(Record):
    cat_id: str = Field(alias="catId")
    status: CatStatus = CatStatus.PENDING
    geohash: str
    lat: float
    lon: float
    created_at: str = Field(alias="createdAt")
    treat_count: int = Field(default=0, alias="treatCount")
    visit_count: int = Field(default=0, alias="visitCount")
    name: str | None = None
    description: str | None = None
    scope: str | None = None
    image_key: str | None = Field(default=None, alias="imageKey")
    submitted_by: str | None = Field(default=None, alias="submittedBy")
    moderated_at: str | None = Field(default=None, alias="moderatedAt")
    moderated_by: str | None = Field(default=None, alias="moderatedBy")
    moderation_reason: str | None = Field(default=None, alias="moderationReason")


class Visit(Record):
    pk: str
    sk: str
    visitor_id: str = Field(alias="visitorId")
    cat_id: str = Field(alias="catId")
    created_at: str = Field(alias="createdAt")


class Treat(Record):
    pk: str
    sk: str
    cat_id: str = Field(alias="catId")
    visitor_id: str = Field(alias="visitorId")
    created_at: str = Field(alias="createdAt")
    scopes: list[str] = Field(default_factory=list)


class UserStat(Record):
    pk: str
    sk: str
    user_id: str = Field(alias="userId")
    scope: str
    count: int = 0
    gsi1pk: str
    gsi1sk: str
    updated_at: str | None = Field(default=None, alias="updatedAt")


class Comment(Record):
    pk: str
    sk: str
    cat_id: str = Field(alias="catId")
    visitor_id: str = Field(alias="visitorId")
    body: str
    created_at: str = Field(alias="createdAt")

    @property
    def comment_id(self) -> str:
        return self.sk.removeprefix("COMMENT#")


class VisitToken(Record):
    token: str
    scope: str
    expires_at: int = Field(alias="expiresAt")
    consumed: bool = False
    created_at: str = Field(alias="createdAt")
    consumed_at: str | None = Field(default=None, alias="consumedAt")

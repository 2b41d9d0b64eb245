"""ShareableLink document model — token-addressed access to one resource."""

from __future__ import annotations

import secrets
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime
from sqlmodel import Field, SQLModel

from .status import LinkPermission, ResourceType


def generate_token() -> str:
    return secrets.token_urlsafe(24)


class ShareableLinkRecord(SQLModel):
    """A shareable link.

    ``id`` doubles as the access token.  ``attributes`` holds free-form
    caller metadata.
    """

    id: str = Field(default_factory=generate_token, primary_key=True)
    resource_type: ResourceType = Field(default=ResourceType.FILE)
    resource_id: str = Field(default="", index=True)
    permission: LinkPermission = Field(default=LinkPermission.VIEW)
    is_public: bool = Field(default=False)
    password_hash: str | None = Field(default=None)
    expires_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    max_uses: int | None = Field(default=None)
    current_uses: int = Field(default=0)
    created_by: str = Field(default="system")
    is_active: bool = Field(default=True)
    attributes: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )

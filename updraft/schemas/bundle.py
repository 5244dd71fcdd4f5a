"""Bundle schemas: the stored document shape and admin request/response bodies.

Bundles travel as camelCase JSON (partition documents, HTTP responses);
Python code uses the snake_case attribute names.
"""

from __future__ import annotations

import re
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

Platform = Literal["ios", "android"]

PLATFORMS: tuple[str, ...] = ("ios", "android")

DEFAULT_CHANNEL = "production"

# Channel becomes the first segment of every partition key.
_CHANNEL_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _check_channel(value: str | None) -> str | None:
    if value is not None and not _CHANNEL_PATTERN.match(value):
        raise ValueError(f"channel must match [A-Za-z0-9._-]+ (got {value!r})")
    return value


def _check_key_segment(value: str | None) -> str | None:
    if value is not None and "/" in value:
        raise ValueError("must not contain '/'")
    return value


class Bundle(_CamelModel):
    """One OTA bundle plus its eligibility rules."""

    id: str = Field(..., min_length=1)
    platform: Platform
    channel: str = DEFAULT_CHANNEL
    target_app_version: Optional[str] = None
    fingerprint_hash: Optional[str] = None
    enabled: bool = True
    force_update: bool = False
    rollout_percentage: int = Field(100, ge=0, le=100)
    target_device_ids: Optional[list[str]] = None
    storage_uri: str
    file_hash: str
    message: Optional[str] = None
    git_commit_hash: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("channel")
    @classmethod
    def _valid_channel(cls, value: str) -> str:
        return _check_channel(value)

    @field_validator("target_app_version", "fingerprint_hash")
    @classmethod
    def _no_slash(cls, value: str | None) -> str | None:
        return _check_key_segment(value)

    @model_validator(mode="after")
    def _require_target(self) -> "Bundle":
        if not self.target_app_version and not self.fingerprint_hash:
            raise ValueError("bundle needs a target_app_version or a fingerprint_hash")
        return self

    def to_document(self) -> dict[str, Any]:
        """camelCase dict as stored inside a partition document."""
        return self.model_dump(mode="json", by_alias=True)


class BundleUpdate(_CamelModel):
    """Partial bundle update (PATCH body). Only fields that are set apply."""

    platform: Optional[Platform] = None
    channel: Optional[str] = None
    target_app_version: Optional[str] = None
    fingerprint_hash: Optional[str] = None
    enabled: Optional[bool] = None
    force_update: Optional[bool] = None
    rollout_percentage: Optional[int] = Field(None, ge=0, le=100)
    target_device_ids: Optional[list[str]] = None
    storage_uri: Optional[str] = None
    file_hash: Optional[str] = None
    message: Optional[str] = None
    git_commit_hash: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None

    @field_validator("channel")
    @classmethod
    def _valid_channel(cls, value: str | None) -> str | None:
        return _check_channel(value)

    @field_validator("target_app_version", "fingerprint_hash")
    @classmethod
    def _no_slash(cls, value: str | None) -> str | None:
        return _check_key_segment(value)

    def changes(self) -> dict[str, Any]:
        """snake_case dict of the explicitly provided fields."""
        return self.model_dump(exclude_unset=True)


class Pagination(_CamelModel):
    """Paging metadata for list responses."""

    total: int
    has_next_page: bool
    has_previous_page: bool
    current_page: int
    total_pages: int


class BundleList(_CamelModel):
    """One page of bundles."""

    data: list[Bundle]
    pagination: Pagination

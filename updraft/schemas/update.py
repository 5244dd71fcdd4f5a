"""Update resolution request/response schemas."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel

from updraft.schemas.bundle import DEFAULT_CHANNEL, Platform

# Reserved id of "the bundle shipped inside the native build". Sorts below every
# real (UUIDv7) bundle id.
BASELINE_BUNDLE_ID = "00000000-0000-0000-0000-000000000000"

UpdateStatus = Literal["UPDATE", "ROLLBACK"]


class UpdateRequest(BaseModel):
    """What a device reports when it checks for an update."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    platform: Platform
    channel: str = DEFAULT_CHANNEL
    app_version: Optional[str] = None
    fingerprint_hash: Optional[str] = None
    current_bundle_id: str = BASELINE_BUNDLE_ID
    min_bundle_id: str = BASELINE_BUNDLE_ID
    device_id: Optional[str] = None

    @model_validator(mode="after")
    def _one_strategy(self) -> "UpdateRequest":
        if (self.app_version is None) == (self.fingerprint_hash is None):
            raise ValueError("exactly one of app_version or fingerprint_hash is required")
        return self


class UpdateDecision(BaseModel):
    """Resolver output. A request that needs no change gets None instead."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    status: UpdateStatus
    force_update: bool
    file_url: Optional[str] = None
    file_hash: Optional[str] = None
    message: Optional[str] = None

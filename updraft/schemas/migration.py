"""Migration ledger schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class MigrationRecord(BaseModel):
    """One applied migration. Written once, never mutated."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    applied_at: datetime


class MigrationStatus(BaseModel):
    """Applied vs pending migrations, in registration order."""

    applied: list[MigrationRecord]
    pending: list[str]

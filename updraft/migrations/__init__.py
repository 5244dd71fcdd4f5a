"""Object-storage layout migrations with backup and rollback."""

from updraft.migrations.engine import (
    Migration,
    MigrationContext,
    MigrationEngine,
    MigrationError,
)

__all__ = ["Migration", "MigrationContext", "MigrationEngine", "MigrationError"]

"""SQLite schema migrations for broker state."""

from broker.core.migrations.runner import apply_migrations

__all__ = ["apply_migrations"]

"""Append-only quote ledger: event-sourced quote domain, SQLite event store, async service with streaming subscriptions, bearer-token and rate-limit checks, and environment configuration."""

__version__ = "1.0.0"
"""
logmirror Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Integration tests (SQLite files, in-memory channel;
  Postgres tests run only when LOGMIRROR_TEST_POSTGRES_DSN is set)
"""

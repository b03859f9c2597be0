"""
RipDB Test Suite.

This package contains:
- unit/: Unit tests (in-memory backends, mocked HTTP)
- integration/: Integration tests (real Redis, opt-in via environment)
"""

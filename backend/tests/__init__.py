"""CourtScribe test suite.

Test Structure:
    tests/
    ├── conftest.py          # Shared fixtures for all tests
    ├── fakes.py             # In-memory recognizer, gateway and clock
    ├── unit/                # Unit tests (no external dependencies)
    └── integration/         # Integration tests (SQLite database, ASGI app)

Run all tests:
    pytest

Run specific test categories:
    pytest -m unit
    pytest -m integration
"""

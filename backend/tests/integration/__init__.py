"""Integration tests for CourtScribe.

Integration tests:
- Run against an in-memory SQLite database
- Exercise the REST and WebSocket endpoints end to end
- Replace only the speech-to-text provider with a fake

Markers:
- @pytest.mark.integration - All integration tests
"""

"""Unit tests for CourtScribe core functionality.

Unit tests:
- Do not require a database or a speech-to-text provider
- Drive the live coordinator and editor with fake providers and a fake clock
- Use mocks for persistence and the OpenAI client
"""

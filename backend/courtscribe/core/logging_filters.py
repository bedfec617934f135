"""Logging filters that route event-bus records to their own log file."""

import logging

EVENT_LOGGER_PREFIX = "courtscribe.core.events"


def _is_event_record(record: logging.LogRecord) -> bool:
    return record.name.startswith(EVENT_LOGGER_PREFIX) or getattr(record, "is_event", False)


class EventFilter(logging.Filter):
    """Pass only event-bus records (event.log)."""

    def filter(self, record: logging.LogRecord) -> bool:
        return _is_event_record(record)


class NonEventFilter(logging.Filter):
    """Pass everything except event-bus records (backend.log)."""

    def filter(self, record: logging.LogRecord) -> bool:
        return not _is_event_record(record)

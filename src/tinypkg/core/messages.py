"""Collected error messages for front ends."""

import logging


class ErrorCollector(logging.Handler):
    """Keeps the text of every ERROR-or-worse record it sees."""

    def __init__(self):
        super().__init__(level=logging.ERROR)
        self.messages: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.messages.append(record.getMessage())

    def clear(self) -> None:
        self.messages.clear()


def format_error_list(messages: list[str]) -> str:
    """Render collected errors the way they are shown at exit."""
    if not messages:
        return ""
    lines = ["Collected errors:"]
    lines.extend(f" * {message}" for message in messages)
    return "\n".join(lines)

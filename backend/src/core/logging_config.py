"""Logging setup shared by the API entry point and scripts."""
import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class ExtraFieldsFormatter(logging.Formatter):
    """Append the structured ``extra`` fields of a record to the message."""

    _reserved = frozenset(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        extras = {
            key: value
            for key, value in vars(record).items()
            if key not in self._reserved
        }
        if not extras:
            return message
        fields = " ".join(f"{key}={value}" for key, value in sorted(extras.items()))
        return f"{message} [{fields}]"


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger once with the extra-fields formatter."""
    root = logging.getLogger()
    root.setLevel(level.upper())
    if any(getattr(h, "_bookmarks_handler", False) for h in root.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(ExtraFieldsFormatter(LOG_FORMAT))
    handler._bookmarks_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)

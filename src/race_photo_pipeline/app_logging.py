"""Logging configuration helpers."""

import logging

_FORMAT = "%(levelname)s: %(name)s: %(message)s%(photo_context)s"


class PhotoContextFilter(logging.Filter):
    """Appends the photo id passed via ``extra`` to pipeline log lines."""

    def filter(self, record: logging.LogRecord) -> bool:
        photo_id = getattr(record, "photo_id", None)
        record.photo_context = f" [photo {photo_id}]" if photo_id else ""
        return True


def configure_logging(level: str = "INFO") -> None:
    """Configure application logging with a single stream handler."""
    logger = logging.getLogger("race_photo_pipeline")
    logger.setLevel(level.upper())
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.addFilter(PhotoContextFilter())
    handler.setFormatter(logging.Formatter(_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False

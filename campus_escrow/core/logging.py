import logging
import sys

from pythonjsonlogger import jsonlogger

from campus_escrow.core.config import Settings
from campus_escrow.core.middleware import current_request_id


class RequestIdFilter(logging.Filter):
    """Stamp records with the active request id unless the caller set one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = current_request_id()
        return True


def configure_logging(settings: Settings) -> None:
    """
    JSON lines on stdout: timestamp, level, logger, message, request_id and
    environment, plus whatever `extra=` the call site passes.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # clear handlers if reloaded
    root.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())
    fmt = jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(request_id)s %(message)s",
        rename_fields={"levelname": "level", "name": "logger"},
        static_fields={"environment": settings.environment},
    )
    handler.setFormatter(fmt)
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(max(level, logging.WARNING))  # the middleware logs access
    logging.getLogger("uvicorn.error").setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(max(level, logging.WARNING))

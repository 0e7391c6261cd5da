import logging

from .config import ServiceSettings
from .tracing import current_trace_ids

_LOG_FORMAT = (
    "%(asctime)s | %(levelname)s | %(service)s | %(name)s | "
    "trace_id=%(trace_id)s span_id=%(span_id)s | %(message)s"
)
_NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite")


class TraceContextFilter(logging.Filter):
    """Stamp records with the service name and the active OpenTelemetry span ids."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service_name
        record.trace_id, record.span_id = current_trace_ids()
        return True


def configure_logging(settings: ServiceSettings) -> None:
    """Configure root logging level and format for the service."""

    logging.basicConfig(level=settings.log_level, format=_LOG_FORMAT)
    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)
    context_filter = next(
        (f for f in root_logger.filters if isinstance(f, TraceContextFilter)),
        None,
    )
    if context_filter is None:
        context_filter = TraceContextFilter(settings.app_name)
        root_logger.addFilter(context_filter)
    else:
        context_filter.service_name = settings.app_name
    for handler in root_logger.handlers:
        if not any(isinstance(f, TraceContextFilter) for f in handler.filters):
            handler.addFilter(context_filter)
    if settings.log_level != "DEBUG":
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

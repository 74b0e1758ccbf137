# libs/food_common/logging_conf.py
import contextvars
import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] trace=%(trace_id)s %(message)s"

# Set by the bus around each handler and by the HTTP correlation middleware
trace_id_var: contextvars.ContextVar = contextvars.ContextVar("trace_id", default=None)


class TraceIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "trace_id", None):
            record.trace_id = trace_id_var.get() or "-"
        return True


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if any(getattr(h, "_food_handler", False) for h in root.handlers):
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(TraceIdFilter())
    handler._food_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)


__all__ = ["LOG_FORMAT", "trace_id_var", "TraceIdFilter", "setup_logging"]

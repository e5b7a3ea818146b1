"""structlog setup bridged onto stdlib logging.

``console`` renders human readable lines with local timestamps, ``json`` emits
one JSON object per event with ISO-8601 UTC timestamps.
"""

import logging

import structlog
from structlog.typing import Processor

from shop_translator.config import settings

_NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "asyncio")


def setup_logging(
    log_level: str | None = None,
    log_format: str | None = None,
    service: str | None = "shop-translator",
    silence_noisy_libs: bool = True,
) -> None:
    level = (log_level or settings.log_level).upper()
    fmt = (log_format or settings.log_format).lower()

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
    ]
    if fmt == "json":
        timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)
    else:
        timestamper = structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False)

    structlog.configure(
        processors=[
            *pre_chain,
            timestamper,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if fmt == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=[*pre_chain, timestamper],
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.WARNING)
    logging.getLogger("shop_translator").setLevel(level)

    structlog.contextvars.clear_contextvars()
    if service:
        structlog.contextvars.bind_contextvars(service=service)

    if silence_noisy_libs:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    structlog.get_logger(__name__).info("logging configured", log_format=fmt, log_level=level)

import logging

import structlog

import config


def configure_logging(level: str | None = None, *, json_output: bool | None = None) -> None:
    level_name = (level or config.LOG_LEVEL).upper()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    use_json = config.LOG_JSON if json_output is None else json_output
    renderer = structlog.processors.JSONRenderer() if use_json else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
    )


def mask_sensitive(value: str | None) -> str | None:
    if value is None:
        return None
    if len(value) <= 4:
        return "*" * len(value)
    return f"{value[:2]}***{value[-2:]}"


def mask_email(value: str | None) -> str | None:
    if value is None:
        return None
    local, sep, domain = value.partition("@")
    if not sep:
        return mask_sensitive(value)
    return f"{mask_sensitive(local)}@{domain}"

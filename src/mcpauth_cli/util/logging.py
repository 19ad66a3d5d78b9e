from __future__ import annotations

import logging
from typing import Mapping

LOG_DOMAINS = {
    "app": "mcpauth.app",
    "auth": "mcpauth.auth",
}

LOG_LEVELS = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def parse_log_level(value: str) -> int:
    level = LOG_LEVELS.get(value.strip().lower())
    if level is None:
        allowed = ", ".join(sorted(LOG_LEVELS))
        raise ValueError(f"invalid log level '{value}' (expected one of: {allowed})")
    return level


def parse_log_specs(specs: list[str]) -> dict[str, int]:
    """Turn `DOMAIN[:LEVEL]` specs into logger levels; `all` enables every domain."""

    enabled: dict[str, int] = {}
    for spec in specs:
        domain, sep, level_name = spec.partition(":")
        domain = domain.strip().lower()
        level = parse_log_level(level_name) if sep else logging.INFO
        if domain == "all":
            enabled.update({name: level for name in LOG_DOMAINS})
            continue
        if domain not in LOG_DOMAINS:
            allowed = ", ".join([*LOG_DOMAINS, "all"])
            raise ValueError(
                f"invalid log domain '{domain}' (expected one of: {allowed})"
            )
        enabled[domain] = level
    return enabled


def configure_logging(
    *, enabled: Mapping[str, int], log_stderr: bool, log_file: str | None
) -> None:
    # Domain loggers stay silent unless enabled; reset them so repeated runs don't stack handlers.
    for logger_name in LOG_DOMAINS.values():
        logger = logging.getLogger(logger_name)
        logger.handlers.clear()
        logger.propagate = False
        logger.setLevel(logging.CRITICAL + 1)

    if not enabled:
        return

    if not log_stderr and not log_file:
        log_stderr = True

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%H:%M:%S")
    handlers: list[logging.Handler] = []
    if log_stderr:
        stderr_handler = logging.StreamHandler()
        stderr_handler.setFormatter(formatter)
        handlers.append(stderr_handler)
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    for domain, level in enabled.items():
        logger = logging.getLogger(LOG_DOMAINS[domain])
        logger.setLevel(level)
        for handler in handlers:
            logger.addHandler(handler)

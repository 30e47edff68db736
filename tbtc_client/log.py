"""
Logging setup.

Modules log through ``structlog.get_logger()``; this only installs the
processor chain for command-line use.
"""

import logging

import structlog


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog with console output at the given level."""
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
    )

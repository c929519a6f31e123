"""Logging setup shared by the CLI and the provisioning engine."""

from __future__ import annotations

import logging
import sys

ROOT_LOGGER_NAME = "nimbus"

_NOISY_LOGGERS = ("boto3", "botocore", "urllib3", "s3transfer")

_configured = False


def get_logger(name: str) -> logging.Logger:
    """Return a logger namespaced under the nimbus root logger.

    Args:
        name: Usually ``__name__`` of the calling module

    Returns:
        Logger instance
    """
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure the nimbus logger hierarchy.

    Safe to call more than once; later calls only adjust the level.

    Args:
        verbose: Enable DEBUG output
        quiet: Only show warnings and errors
    """
    global _configured

    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)

    if not _configured:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")
        )
        root.addHandler(handler)
        root.propagate = False
        _configured = True

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

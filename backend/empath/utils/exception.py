# empath/utils/exception.py error types and colored console helpers
import datetime
import logging
import sys
from typing import TextIO

logger = logging.getLogger("empath")


class EmpathError(Exception):
    """Base class for all errors raised inside empath."""


class TransientServiceError(EmpathError):
    """Timeout, network failure or malformed response from an LLM service."""


class ProviderError(EmpathError):
    """The embedding provider could not produce a vector (quota, network, auth)."""


class StorageCorruption(EmpathError):
    """Persisted data could not be read back."""


class PayloadValidationError(EmpathError):
    """A decision or reflection payload is structurally invalid."""


def setup_logging(level: int = logging.INFO, stream: TextIO = sys.stdout) -> None:
    """Configure the root logger once for the whole process."""
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(level)
        return
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    ))
    root.addHandler(handler)
    root.setLevel(level)


def _describe(fn) -> str:
    return getattr(fn, '__qualname__', 'unknown function')


def print_error(fn, err):
    """Report an unrecoverable error in fn, in red, and log it."""
    red = "\033[31m"
    bold = "\033[1m"
    reset = "\033[0m"

    fn_name = _describe(fn)
    current_time = datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S')

    msg = f"{bold}{red}[{current_time}] unrecoverable error in {fn_name}: {err}{reset}\n"
    print(msg)
    logger.error("%s: %s", fn_name, err)


def print_warning(fn, err, warning_level="default"):
    """Report a recoverable problem in fn, in yellow, and log it.

    warning_level is free text, usually one of low / medium / high.
    """
    yellow = "\033[33m"
    bold = "\033[1m"
    reset = "\033[0m"

    fn_name = _describe(fn)
    current_time = datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S')

    msg = f"{bold}{yellow}[{current_time}] {warning_level} risk warning in {fn_name}: {err}{reset}\n"
    print(msg)
    logger.warning("%s (%s): %s", fn_name, warning_level, err)

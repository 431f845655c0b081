"""
Environment lookup for the packaging tools.

All environment variables the tools read go through this module so that
missing values produce one consistent error message.
"""

import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)

LOG_LEVEL_VAR = "HL_LOG_LEVEL"

_LEVEL_MAP = {
    'error': logging.ERROR,
    'warn': logging.WARNING,
    'warning': logging.WARNING,
    'info': logging.INFO,
    'debug': logging.DEBUG,
}

_HINTS = {
    "LLVM_DIR": "Set it to the directory containing LLVMConfig.cmake, e.g. /usr/lib/llvm-18/lib/cmake/llvm",
    "Clang_DIR": "Set it to the directory containing ClangConfig.cmake, e.g. /usr/lib/llvm-18/lib/cmake/clang",
}


def get(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return the value of an environment variable, or default when unset or empty."""
    value = os.environ.get(name)
    if not value:
        return default
    return value


def ensure(name: str) -> str:
    """
    Return the value of a required environment variable.

    Raises:
        EnvironmentError: If the variable is unset or empty
    """
    value = get(name)
    if value is None:
        hint = _HINTS.get(name, f"Please export {name}.")
        raise EnvironmentError(f"{name} environment variable is not set. {hint}")
    return value


def parse_log_level(level_str: Optional[str]) -> int:
    """Map an error|warn|info|debug string to a logging level (default: INFO)."""
    if not level_str:
        return logging.INFO
    return _LEVEL_MAP.get(level_str.lower(), logging.INFO)


def setup_logging(level_str: Optional[str] = None, force: bool = False) -> None:
    """
    Configure root logging from level_str or HL_LOG_LEVEL.

    Does nothing if logging is already configured, unless force is set.
    """
    if logging.getLogger().hasHandlers() and not force:
        return
    if level_str is None:
        level_str = get(LOG_LEVEL_VAR, 'info')
    logging.basicConfig(
        level=parse_log_level(level_str),
        format='[%(levelname)s] %(message)s',
        force=True
    )

"""Environment variable loading utilities."""

from __future__ import annotations

import logging
import os


def load_project_env() -> dict[str, str]:
    """Load environment variables from the system.

    Returns:
        A dictionary containing the current environment variables.
    """
    return dict(os.environ)


def env_int(env: dict[str, str], name: str, default: int) -> int:
    """Read an integer setting, falling back to ``default`` on bad input.

    Args:
        env: Environment mapping as returned by ``load_project_env``.
        name: Variable name.
        default: Value used when the variable is unset or not a number.

    Returns:
        The parsed integer.
    """
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(float(raw))
    except ValueError:
        logging.warning("Ignoring invalid integer for %s: %r", name, raw)
        return default


def env_float(env: dict[str, str], name: str, default: float) -> float:
    """Read a float setting, falling back to ``default`` on bad input.

    Args:
        env: Environment mapping as returned by ``load_project_env``.
        name: Variable name.
        default: Value used when the variable is unset or not a number.

    Returns:
        The parsed float.
    """
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logging.warning("Ignoring invalid number for %s: %r", name, raw)
        return default

"""Shared configuration lookup for the admin-tools suite.

Values come from the process environment, with a ``.env`` file in the
working directory loaded on first import (python-dotenv).
"""

from __future__ import annotations
import os
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


def env(key: str, default: Optional[str] = None) -> Optional[str]:
    """Return environment variable *key*, or *default* when unset or blank."""
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    return value.strip()


def env_list(key: str) -> List[str]:
    """Comma-separated variable as a list (empty entries dropped)."""
    raw = env(key, "") or ""
    return [part.strip() for part in raw.split(",") if part.strip()]

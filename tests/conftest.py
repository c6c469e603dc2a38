"""Shared pytest fixtures."""

from datetime import datetime
from typing import Callable

import pytest

from factories import FIXED_NOW


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Clock frozen at 2024-06-15 09:30."""
    return lambda: FIXED_NOW

from __future__ import annotations

import pytest

from poladcyclet.storage import close_all_databases


@pytest.fixture(autouse=True)
def _close_open_databases():
    """Release every handle a test leaves open so paths can be reused."""
    yield
    close_all_databases()

from __future__ import annotations

import pytest

from helpers import RecordingSleep


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()

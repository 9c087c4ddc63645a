import pytest
import sys
import os

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Import fixtures so they're available to all tests
from tests.fixtures.database import (
    test_engine,
    test_session_maker,
    test_session,
    make_user,
    alice,
    bob,
    carol,
)

from tests.fixtures.services import (
    test_settings,
    clock,
    recorder,
    event_bus,
    ledger,
    like_service,
)

from tests.fixtures.api import api_client

# Configure pytest
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "credits: tests related to the credit ledger"
    )
    config.addinivalue_line(
        "markers", "cooldown: tests related to the like cooldown window"
    )
    config.addinivalue_line(
        "markers", "likes: tests related to sending and cancelling likes"
    )
    config.addinivalue_line(
        "markers", "matching: tests related to match creation and mismatch reports"
    )
    config.addinivalue_line(
        "markers", "encryption: tests related to match keys and envelopes"
    )
    config.addinivalue_line(
        "markers", "api: tests that go through the HTTP layer"
    )

"""
pytest configuration shared by all tests.

Adds src directory to Python path for imports and resets process-wide
state (circuit breakers, health state, log context) around each test.
"""

import sys
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))


@pytest.fixture(autouse=True)
def reset_global_state():
    """Fresh breakers, health state and log context for every test."""
    from core.logging.context import clear_log_context
    from parking_pipeline.common.resilience import reset_circuit_breakers
    from parking_pipeline.health import reset_health_state

    reset_circuit_breakers()
    reset_health_state()
    clear_log_context()
    yield
    reset_circuit_breakers()
    reset_health_state()
    clear_log_context()

import matplotlib

matplotlib.use("Agg")

import pytest

from sweepmeter.session import SessionManager


@pytest.fixture(autouse=True)
def release_session_manager():
    yield
    manager = SessionManager._instance
    if manager is not None:
        manager.shutdown()

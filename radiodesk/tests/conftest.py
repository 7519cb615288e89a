import os
import sys
import pytest


def _ensure_project_root_on_sys_path() -> None:
    here = os.path.dirname(__file__)
    project_root = os.path.abspath(os.path.join(here, "..", ".."))
    if project_root not in sys.path:
        sys.path.insert(0, project_root)


_ensure_project_root_on_sys_path()


@pytest.fixture(autouse=True)
def _clear_radiodesk_env():
    """Ensure RADIODESK_* settings do not leak across tests.
    A developer shell or .env may set these; clear before each test and
    restore afterwards so tests explicitly setting them stay deterministic.
    """
    keys = [k for k in os.environ if k.startswith('RADIODESK_')]
    backup = {k: os.environ.get(k) for k in keys}
    for k in keys:
        os.environ.pop(k, None)
    try:
        yield
    finally:
        for k in [k for k in os.environ if k.startswith('RADIODESK_')]:
            os.environ.pop(k, None)
        os.environ.update(backup)


@pytest.fixture(autouse=True)
def _reset_settings_manager():
    """Drop the lazily created global settings manager between tests."""
    from radiodesk.crosscutting import config
    config.settings_manager = None
    yield
    config.settings_manager = None

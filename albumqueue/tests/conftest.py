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
def _clear_albumqueue_env():
    """Keep settings-related environment variables from leaking between tests."""
    keys = [k for k in os.environ if k.startswith('ALBUMQUEUE_') or k.startswith('SPOTIFY_')]
    backup = {k: os.environ.pop(k) for k in keys}
    try:
        yield
    finally:
        for k in [k for k in os.environ if k.startswith('ALBUMQUEUE_') or k.startswith('SPOTIFY_')]:
            os.environ.pop(k, None)
        os.environ.update(backup)

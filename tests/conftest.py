"""Shared fixtures for the hookcheck test suite."""

import gc

import pytest
from unicorn import Uc


@pytest.fixture
def released(monkeypatch):
    """Record every native handle Uc frees, with the cyclic collector off.

    With gc disabled, a handle only shows up here if it was released
    deterministically rather than by a later collection.
    """
    calls = []
    original = Uc.release_handle

    def recording_release(uch):
        calls.append(uch)
        original(uch)

    monkeypatch.setattr(Uc, "release_handle", staticmethod(recording_release))
    gc.disable()
    try:
        yield calls
    finally:
        gc.enable()

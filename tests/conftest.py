from __future__ import annotations

import pathlib
import sys

import pytest

from vaultlens.config import ServerConfig

STUB_SERVER = pathlib.Path(__file__).resolve().parent / "stub_server.py"


@pytest.fixture
def stub_config():
    """Build a ``ServerConfig`` that launches the stub server."""

    def make(mode: str = "", *, timeout: float = 5.0, **kwargs) -> ServerConfig:
        command = [sys.executable, "-u", str(STUB_SERVER)]
        if mode:
            command.append(mode)
        return ServerConfig(name="StubServer", command=command, timeout=timeout, **kwargs)

    return make

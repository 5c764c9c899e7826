from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from yande_popular.config import ForwarderKind, Settings

VOCE = {"channel_id": "2", "api_key": "k", "server_domain": "https://chat.example/"}


def test_voce_defaults() -> None:
    settings = Settings(**VOCE)
    assert settings.forwarder is ForwarderKind.VOCE
    assert settings.server_domain == "https://chat.example"
    assert settings.concurrency == 4
    assert settings.data_dir == Path("data")
    assert settings.primary_listing == "/post/popular_recent"
    assert settings.auxiliary_listings == []


def test_voce_requires_credentials() -> None:
    with pytest.raises(ValidationError) as excinfo:
        Settings(channel_id="2")
    assert "api_key" in str(excinfo.value)
    assert "server_domain" in str(excinfo.value)


def test_matrix_requires_its_own_credentials() -> None:
    with pytest.raises(ValidationError) as excinfo:
        Settings(forwarder="matrix", **VOCE)
    assert "homeserver_url" in str(excinfo.value)

    settings = Settings(
        forwarder="matrix",
        homeserver_url="https://matrix.example/",
        user="bot",
        password="pw",
        room_id="!room:example",
    )
    assert settings.forwarder is ForwarderKind.MATRIX
    assert settings.homeserver_url == "https://matrix.example"


def test_concurrency_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        Settings(concurrency=0, **VOCE)

"""Shared fixtures for the height monitor tests."""

from __future__ import annotations

import pytest

from helpers import RecordingDispatcher
from stratum_height_monitor.config.models import SessionConfig, StratumEndpointConfig


@pytest.fixture
def endpoint() -> StratumEndpointConfig:
    return StratumEndpointConfig(
        name="pool-a",
        host="127.0.0.1",
        port=3333,
        username="wallet.monitor",
        password="x",
        coin_type="btc",
        pool_type="ckpool",
        timeout=2,
    )


@pytest.fixture
def fast_settings() -> SessionConfig:
    return SessionConfig(
        initial_retry_interval=0,
        reconnect_retry_interval=0,
        reconnect_max_retries=3,
        read_error_delay=0,
        write_timeout=2,
    )


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()

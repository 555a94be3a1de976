import asyncio
import logging
import os
import sys
import textwrap

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT)

from rewards_indexer.logging import LOGGER_NAME


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records delays and returns at once."""

    def __init__(self):
        self.calls = []

    async def __call__(self, delay):
        self.calls.append(delay)
        await asyncio.sleep(0)


class FlakySubscribe:
    """Subscription primitive that fails ``failures`` times, then succeeds."""

    def __init__(self, failures=0, exc=ConnectionError("node unreachable")):
        self.failures = failures
        self.exc = exc
        self.calls = []
        self.handler = None

    async def __call__(self, network, event_name, handler):
        self.calls.append((network, event_name))
        if len(self.calls) <= self.failures:
            raise self.exc
        self.handler = handler
        return f"sub-{network}"


@pytest.fixture
def sleep_recorder():
    return RecordingSleep()


@pytest.fixture
def flaky_subscribe():
    return FlakySubscribe


@pytest.fixture
def indexer_logs(caplog):
    caplog.set_level(logging.DEBUG, logger=LOGGER_NAME)
    return caplog


@pytest.fixture
def cfg_file(tmp_path, monkeypatch):
    monkeypatch.setenv("TEST_WS_URL", "wss://node.example/ws/secretkey1234")
    p = tmp_path / "indexer.yaml"
    p.write_text(textwrap.dedent("""
    indexer:
      event_name: RewardsDeposit
      on_record_error: continue
      retry:
        delay_seconds: 60
      networks:
        mainnet:
          ws_url: "ENV:TEST_WS_URL"
          contract: "0x00000000000000000000000000000000000000aa"
          events:
            RewardsDeposit: "0xfeed"
    """), encoding="utf-8")
    return p

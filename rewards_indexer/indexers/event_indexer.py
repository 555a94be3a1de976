"""
Event indexer.

Subscribes to ``RewardsDeposit`` logs for one network and acknowledges every
delivered event in the log. Setup failures are retried on a fixed delay; once
the subscription is established the retry loop ends and delivery continues
under the subscription primitive's own lifecycle.
"""
from __future__ import annotations

import asyncio
import inspect
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional

from ..config_loader import DEFAULT_EVENT_NAME, RECORD_ERROR_MODES
from ..logging import SimpleLogger, log
from ..models.types import block_number_of
from ..retry import RetryPolicy, describe_delay

Subscribe = Callable[[str, str, Callable[[Iterable[Any]], Any]], Awaitable[Any]]
Sleep = Callable[[float], Awaitable[None]]


class IndexerState(str, Enum):
    ATTEMPTING_SUBSCRIPTION = "attempting_subscription"
    SUBSCRIBED = "subscribed"
    STOPPED = "stopped"


class NetworkIndexer:
    def __init__(
        self,
        network: str,
        subscribe: Subscribe,
        *,
        event_name: str = DEFAULT_EVENT_NAME,
        retry: Optional[RetryPolicy] = None,
        on_record_error: str = "continue",
        setup_timeout: Optional[float] = None,
        logger: SimpleLogger = log,
        stop_event: Optional[asyncio.Event] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        if not isinstance(network, str) or not network.strip():
            raise ValueError("network must be a non-empty string")
        if on_record_error not in RECORD_ERROR_MODES:
            raise ValueError(f"on_record_error must be one of {RECORD_ERROR_MODES}, got {on_record_error!r}")
        self.network = network
        self.event_name = event_name
        self.retry = retry or RetryPolicy()
        self.on_record_error = on_record_error
        self.setup_timeout = setup_timeout
        self._subscribe = subscribe
        self._log = logger
        self._stop = stop_event
        self._sleep = sleep

        self.state = IndexerState.ATTEMPTING_SUBSCRIPTION
        self.attempts = 0
        self.subscription: Any = None

    # ------------------------------------------------------------------
    # Batch handler
    # ------------------------------------------------------------------
    def handle_batch(self, events: Iterable[Any]) -> int:
        """Log one acknowledgment per event; returns how many were acknowledged."""
        processed = 0
        try:
            iterator = iter(events)
        except TypeError as e:
            self._log.error(f"Error processing real-time event: {e}", source=self.network)
            return processed
        while True:
            try:
                event = next(iterator)
            except StopIteration:
                break
            except Exception as e:  # noqa: BLE001
                # a broken iterator cannot be resumed
                self._log.error(f"Error processing real-time event: {e}", source=self.network)
                break
            try:
                block = block_number_of(event)
                self._log.info(f"Processed new event in block {block}", source=self.network)
                processed += 1
            except Exception as e:  # noqa: BLE001
                self._log.error(f"Error processing real-time event: {e}", source=self.network)
                if self.on_record_error == "abort":
                    break
        return processed

    # ------------------------------------------------------------------
    # Retry loop
    # ------------------------------------------------------------------
    def _stopped(self) -> bool:
        return self._stop is not None and self._stop.is_set()

    async def _until_stopped(self, aw: Awaitable[Any]) -> tuple[bool, Any]:
        """Await ``aw`` unless the stop event fires first; returns (finished, result)."""
        if self._stop is None:
            return True, await aw
        task = asyncio.ensure_future(aw)
        stopper = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            raise
        finally:
            stopper.cancel()
        if task.done():
            return True, task.result()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return False, None

    async def _setup(self) -> Any:
        outcome = self._subscribe(self.network, self.event_name, self.handle_batch)
        if inspect.isawaitable(outcome):
            if self.setup_timeout is not None:
                outcome = asyncio.wait_for(outcome, self.setup_timeout)
            outcome = await outcome
        return outcome

    async def run(self) -> IndexerState:
        self._log.info(f"Starting indexer for {self.network}...")
        while not self._stopped():
            self.state = IndexerState.ATTEMPTING_SUBSCRIPTION
            try:
                self._log.info("Setting up watcher for new events...", source=self.network)
                self.attempts += 1
                finished, self.subscription = await self._until_stopped(self._setup())
                if not finished:
                    break
                self.state = IndexerState.SUBSCRIBED
                self._log.success("Watcher set up. Listening for new events...", source=self.network)
                return self.state
            except asyncio.CancelledError:
                raise
            except Exception as e:  # noqa: BLE001
                self._log.error(f"Error in indexEvents: {e!r}", source=self.network)
                if not self.retry.should_retry(self.attempts):
                    self._log.error(f"Giving up after {self.attempts} attempts", source=self.network)
                    break
                delay = self.retry.delay_for(self.attempts)
                self._log.warning(f"Retrying in {describe_delay(delay)}...", source=self.network)
                finished, _ = await self._until_stopped(self._sleep(delay))
                if not finished:
                    break

        self.state = IndexerState.STOPPED
        self._log.info("Indexer stopped before subscribing", source=self.network)
        return self.state


async def index_events_for_network(
    network: str,
    subscribe: Optional[Subscribe] = None,
    **kwargs: Any,
) -> NetworkIndexer:
    """
    Run the retry loop for ``network`` until the watcher is set up.

    Without an explicit ``subscribe`` the websocket primitive is built from
    the loaded config, which also supplies retry/error-mode defaults unless
    they are passed as keyword arguments.
    """
    if subscribe is None:
        from ..clients.ws_subscription import WsEventSubscriber
        from ..config_loader import load_indexer_config

        cfg = load_indexer_config()
        subscribe = WsEventSubscriber(cfg, logger=kwargs.get("logger", log))
        kwargs.setdefault("event_name", cfg.event_name)
        kwargs.setdefault("retry", cfg.retry)
        kwargs.setdefault("on_record_error", cfg.on_record_error)
        kwargs.setdefault("setup_timeout", cfg.setup_timeout_seconds)

    indexer = NetworkIndexer(network, subscribe, **kwargs)
    await indexer.run()
    return indexer

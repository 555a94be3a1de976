"""
Websocket log subscription (EVM JSON-RPC ``eth_subscribe`` / ``logs``).

This is the default subscription primitive handed to the indexer. Setup
resolves once the node has acknowledged the subscription; afterwards a
background task feeds every ``eth_subscription`` notification to the handler
and transparently reconnects + re-subscribes when the socket drops.
"""
from __future__ import annotations

import asyncio
import inspect
import itertools
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..config_loader import IndexerConfig, NetworkConfig, load_indexer_config
from ..logging import SimpleLogger, log
from ..models.types import EventRecord

Handler = Callable[[List[EventRecord]], Union[Awaitable[None], None]]


class SubscriptionError(RuntimeError):
    pass


class Subscription:
    """Handle for an established subscription; ``close()`` tears it down."""

    def __init__(self, network: str, event_name: str, subscription_id: str):
        self.network = network
        self.event_name = event_name
        self.subscription_id = subscription_id
        self.delivered = 0
        self._ws: Any = None
        self._task: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def closed(self) -> bool:
        return self._closing or (self._task is not None and self._task.done())

    async def close(self) -> None:
        self._closing = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if self._ws is not None:
            await self._ws.close()

    def __repr__(self) -> str:
        return f"<Subscription {self.network}:{self.event_name} id={self.subscription_id}>"


class WsEventSubscriber:
    def __init__(
        self,
        config: IndexerConfig,
        *,
        connect: Callable[..., Awaitable[Any]] = websockets.connect,
        logger: SimpleLogger = log,
        reconnect_initial: float = 0.5,
        reconnect_max: float = 5.0,
        ack_timeout: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self._connect = connect
        self._log = logger
        self.reconnect_initial = reconnect_initial
        self.reconnect_max = reconnect_max
        self.ack_timeout = ack_timeout
        self._sleep = sleep
        self._ids = itertools.count(1)

    async def __call__(self, network: str, event_name: str, handler: Handler) -> Subscription:
        return await self.subscribe(network, event_name, handler)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------
    def filter_params(self, net: NetworkConfig, event_name: str) -> Dict[str, Any]:
        topic = net.topic_for(event_name)
        if not topic:
            raise SubscriptionError(f"no topic configured for event {event_name!r} on {net.name}")
        params: Dict[str, Any] = {"topics": [topic]}
        if net.contract:
            params["address"] = net.contract
        return params

    async def subscribe(self, network: str, event_name: str, handler: Handler) -> Subscription:
        net = self.config.network(network)
        params = self.filter_params(net, event_name)

        ws = await self._open(net)
        try:
            sub_id, early = await self._subscribe(ws, params)
        except BaseException:
            await ws.close()
            raise

        sub = Subscription(network, event_name, sub_id)
        sub._ws = ws
        for raw in early:
            await self._dispatch(sub, raw, handler)
        sub._task = asyncio.create_task(self._pump(sub, net, params, handler), name=f"ws-{network}-{event_name}")
        return sub

    async def _open(self, net: NetworkConfig):
        return await self._connect(net.ws_url, ping_interval=20, ping_timeout=20, close_timeout=5)

    async def _subscribe(self, ws, params: Dict[str, Any]):
        rid = next(self._ids)
        await ws.send(json.dumps({"jsonrpc": "2.0", "id": rid, "method": "eth_subscribe", "params": ["logs", params]}))
        try:
            return await asyncio.wait_for(self._await_ack(ws, rid), self.ack_timeout)
        except asyncio.TimeoutError:
            raise SubscriptionError(f"no subscription ack within {self.ack_timeout}s") from None

    async def _await_ack(self, ws, rid: int):
        early: List[str] = []
        while True:
            try:
                raw = await ws.recv()
            except (ConnectionClosed, OSError) as e:
                raise SubscriptionError(f"connection lost before subscription ack: {e}") from e
            try:
                msg = json.loads(raw)
            except ValueError:
                continue
            if not isinstance(msg, dict):
                continue
            if msg.get("id") == rid:
                if "error" in msg:
                    raise SubscriptionError(f"eth_subscribe error: {msg['error']}")
                return str(msg.get("result")), early
            if msg.get("method") == "eth_subscription":
                early.append(raw)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------
    async def _dispatch(self, sub: Subscription, raw: Any, handler: Handler) -> None:
        try:
            msg = json.loads(raw)
        except ValueError:
            self._log.warning(f"Ignoring non-JSON frame: {raw!r}", source=sub.network)
            return
        if not isinstance(msg, dict):
            self._log.warning(f"Ignoring non-object frame: {raw!r}", source=sub.network)
            return
        if msg.get("method") != "eth_subscription":
            return
        body = msg.get("params")
        if not isinstance(body, dict):
            self._log.warning(f"Ignoring notification without params: {raw!r}", source=sub.network)
            return
        if str(body.get("subscription")) != sub.subscription_id:
            return
        try:
            record = EventRecord.from_rpc_log(body.get("result"))
        except ValueError as e:
            self._log.error(f"Malformed log notification: {e}", source=sub.network)
            return
        try:
            outcome = handler([record])
            if inspect.isawaitable(outcome):
                await outcome
        except asyncio.CancelledError:
            raise
        except Exception as e:  # noqa: BLE001
            self._log.error(f"Event handler failed: {e}", source=sub.network)
        sub.delivered += 1

    async def _pump(self, sub: Subscription, net: NetworkConfig, params: Dict[str, Any], handler: Handler) -> None:
        while not sub._closing:
            ws = sub._ws
            try:
                async for raw in ws:
                    await self._dispatch(sub, raw, handler)
                self._log.warning("WS closed by peer, reconnecting …", source=sub.network)
            except ConnectionClosed as e:
                self._log.warning(f"WS closed: {e}, reconnecting …", source=sub.network)
            except (OSError, WebSocketException) as e:
                self._log.warning(f"WS error: {e}, reconnecting …", source=sub.network)
            except Exception as e:  # noqa: BLE001
                self._log.error(f"WS delivery failed: {e!r}, reconnecting …", source=sub.network)
                await ws.close()
            if sub._closing:
                return
            await self._reconnect(sub, net, params, handler)

    async def _reconnect(self, sub: Subscription, net: NetworkConfig, params: Dict[str, Any], handler: Handler) -> None:
        backoff = self.reconnect_initial
        while not sub._closing:
            await self._sleep(backoff)
            try:
                ws = await self._open(net)
            except Exception as e:  # noqa: BLE001
                self._log.warning(f"Reconnect failed: {e}", source=sub.network)
                backoff = min(backoff * 2, self.reconnect_max)
                continue
            try:
                sub_id, early = await self._subscribe(ws, params)
            except SubscriptionError as e:
                await ws.close()
                self._log.warning(f"Re-subscribe failed: {e}", source=sub.network)
                backoff = min(backoff * 2, self.reconnect_max)
                continue
            sub._ws = ws
            sub.subscription_id = sub_id
            self._log.info(f"Re-subscribed to {sub.event_name} (id={sub_id})", source=sub.network)
            for raw in early:
                await self._dispatch(sub, raw, handler)
            return


async def subscribe_to_events(
    network: str,
    event_name: str,
    handler: Handler,
    *,
    config: Optional[IndexerConfig] = None,
) -> Subscription:
    """Module-level convenience mirroring the subscriber's call signature."""
    subscriber = WsEventSubscriber(config or load_indexer_config())
    return await subscriber.subscribe(network, event_name, handler)

"""
Rewards Indexer Console

Commands:
  ping
  config
  networks
  smoke
  run [--network <name> ...] [--debug]

- run: starts one indexer per network (all configured networks when no
  --network is given) and keeps the process alive for the subscriptions
  until interrupted.
"""
import argparse
import asyncio
from dataclasses import asdict

from dotenv import load_dotenv
from rich import box
from rich.console import Console
from rich.table import Table

from ..clients.ws_subscription import WsEventSubscriber
from ..config_loader import (
    ConfigError,
    load_indexer_config,
    load_raw_section,
    pretty,
    redacted,
    resolve_config_path,
)
from ..indexers.event_indexer import IndexerState, NetworkIndexer
from ..logging import configure_console_log, log


# --------- helpers ---------
def _load_cfg(args):
    return load_indexer_config(getattr(args, "config", None))


def _selected_networks(args, cfg):
    names = args.network or sorted(cfg.networks)
    unknown = [n for n in names if n not in cfg.networks]
    if unknown:
        raise ConfigError(f"Unknown network(s): {', '.join(unknown)}")
    return names


async def _run_networks(cfg, names, stop_event: asyncio.Event) -> int:
    subscriber = WsEventSubscriber(cfg)
    indexers = [
        NetworkIndexer(
            name,
            subscriber,
            event_name=cfg.event_name,
            retry=cfg.retry,
            on_record_error=cfg.on_record_error,
            setup_timeout=cfg.setup_timeout_seconds,
            stop_event=stop_event,
        )
        for name in names
    ]
    # networks are independent; one failing never blocks another
    try:
        await asyncio.gather(*(ix.run() for ix in indexers))
        if any(ix.state is IndexerState.SUBSCRIBED for ix in indexers):
            await stop_event.wait()
    finally:
        for ix in indexers:
            close = getattr(ix.subscription, "close", None)
            if ix.state is IndexerState.SUBSCRIBED and close is not None:
                await close()
    live = [ix for ix in indexers if ix.state is IndexerState.SUBSCRIBED]
    return 0 if len(live) == len(indexers) else 1


# --------- commands ---------
def cmd_ping(args):
    print("OK: rewards_indexer console is alive.")
    return 0


def cmd_config(args):
    load_dotenv()
    path = resolve_config_path(getattr(args, "config", None))
    print(pretty(redacted(load_raw_section(path))))
    return 0


def cmd_networks(args):
    cfg = _load_cfg(args)
    t = Table(title=f"Networks ({cfg.event_name})", box=box.SIMPLE, expand=False)
    t.add_column("Network", style="bold cyan")
    t.add_column("Contract")
    t.add_column("Topic")
    for name in sorted(cfg.networks):
        net = cfg.networks[name]
        t.add_row(name, net.contract or "-", net.topic_for(cfg.event_name) or "⚠️ missing")
    Console().print(t)
    return 0


def cmd_smoke(args):
    problems = 0
    path = resolve_config_path(getattr(args, "config", None))
    if not path.exists():
        print(f"missing config file: {path}")
        return 1
    print("config file: ok ✅")
    try:
        cfg = load_indexer_config(path)
        print("config load + ENV resolve: ok ✅")
    except ConfigError as e:
        print("config error:", e)
        print("result: FAIL ❌")
        return 1
    for name, net in sorted(cfg.networks.items()):
        if not net.topic_for(cfg.event_name):
            print(f"{name}: no topic for {cfg.event_name} ❌")
            problems += 1
    print("retry:", pretty(asdict(cfg.retry)))
    print("result:", "PASS ✅" if problems == 0 else "FAIL ❌")
    return problems


def cmd_run(args):
    configure_console_log(debug=args.debug)
    cfg = _load_cfg(args)
    names = _selected_networks(args, cfg)
    log.banner(f"Rewards indexer: {', '.join(names)}")

    async def _main():
        stop_event = asyncio.Event()
        try:
            return await _run_networks(cfg, names, stop_event)
        except asyncio.CancelledError:
            stop_event.set()
            raise

    try:
        return asyncio.run(_main())
    except KeyboardInterrupt:
        log.warning("Interrupted, shutting down")
        return 130


def build_parser():
    p = argparse.ArgumentParser(prog="rewards_indexer", description="Rewards event indexer")
    p.add_argument("--config", help="Path to indexer.yaml (defaults to $REWARDS_INDEXER_CONFIG or package config)")
    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("ping");      s.set_defaults(func=cmd_ping)
    s = sub.add_parser("config");    s.set_defaults(func=cmd_config)
    s = sub.add_parser("networks");  s.set_defaults(func=cmd_networks)
    s = sub.add_parser("smoke");     s.set_defaults(func=cmd_smoke)

    s = sub.add_parser("run", help="index events for one or more networks")
    s.add_argument("--network", action="append", default=[], help="network name (repeatable)")
    s.add_argument("--debug", action="store_true", help="debug-level console logging")
    s.set_defaults(func=cmd_run)

    return p


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except ConfigError as e:
        print(f"error: {e}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())

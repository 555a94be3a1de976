from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple


def _to_int(value: Any) -> Optional[int]:
    """Accept JSON-RPC quantities (``"0x64"``) as well as plain ints/strings."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"not a quantity: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        v = value.strip()
        if v.lower().startswith("0x"):
            return int(v, 16)
        return int(v)
    raise ValueError(f"not a quantity: {value!r}")


@dataclass(frozen=True)
class EventRecord:
    block_number: int
    transaction_hash: Optional[str] = None
    log_index: Optional[int] = None
    address: Optional[str] = None
    topics: Tuple[str, ...] = field(default_factory=tuple)
    data: Optional[str] = None
    removed: bool = False

    @classmethod
    def from_rpc_log(cls, obj: Mapping[str, Any]) -> "EventRecord":
        """
        Build a record from an ``eth_subscription`` / ``eth_getLogs`` log object.

        Only the envelope is read; ``data`` stays raw hex.
        """
        if not isinstance(obj, Mapping):
            raise ValueError(f"log entry must be an object, got {type(obj).__name__}")
        block = _to_int(obj.get("blockNumber"))
        if block is None:
            raise ValueError("log entry has no blockNumber")
        return cls(
            block_number=block,
            transaction_hash=obj.get("transactionHash"),
            log_index=_to_int(obj.get("logIndex")),
            address=obj.get("address"),
            topics=tuple(obj.get("topics") or ()),
            data=obj.get("data"),
            removed=bool(obj.get("removed", False)),
        )


def block_number_of(event: Any) -> int:
    """Block number of an :class:`EventRecord` or of a raw log mapping."""
    if isinstance(event, Mapping):
        for key in ("block_number", "blockNumber"):
            if key in event:
                block = _to_int(event[key])
                if block is not None:
                    return block
        raise ValueError("event has no block number")
    block = getattr(event, "block_number", None)
    if block is None:
        raise ValueError(f"event has no block number: {event!r}")
    return int(block)

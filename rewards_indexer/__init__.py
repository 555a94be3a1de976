"""Event indexer for ``RewardsDeposit`` logs."""

from .indexers.event_indexer import IndexerState, NetworkIndexer, index_events_for_network

__all__ = ["IndexerState", "NetworkIndexer", "index_events_for_network"]

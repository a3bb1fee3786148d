"""Peer discovery."""

from parking_pipeline.directory.peer_directory import (
    PeerDirectory,
    PeerSet,
    locate_self,
    order_peers,
    peer_sort_key,
)

__all__ = [
    "PeerDirectory",
    "PeerSet",
    "locate_self",
    "order_peers",
    "peer_sort_key",
]

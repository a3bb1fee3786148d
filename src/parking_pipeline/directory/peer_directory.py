"""
Peer discovery through the Kubernetes API.

Each replica lists the pods in its namespace, keeps the ones carrying
its role label, and sorts them with peer_sort_key(). Every replica that
reads the same pod listing derives the same order, which is all the
coordination the range partitioner needs.

Directory failures never propagate: list_peers() falls back to a
single-peer PeerSet so the process keeps working (possibly overlapping
with peers) rather than stalling.
"""

import asyncio
import logging
import re
import ssl
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import aiohttp

from parking_pipeline.common.exceptions import DirectoryUnavailableError
from parking_pipeline.common.logging import LoggedClass
from parking_pipeline.config import DirectoryConfig
from parking_pipeline.metrics import record_directory_fallback, record_peer_set

_NUMERIC_SUFFIX = re.compile(r"(\d+)$")


@dataclass(frozen=True)
class PeerSet:
    """Ordered same-role peers observed in one directory query.

    Attributes:
        peers: Peer identifiers in agreed order
        self_index: This process's zero-based position (always valid)
        degraded: True when the directory could not be read and the set
            is the single-peer fallback
    """

    peers: Tuple[str, ...]
    self_index: int = 0
    degraded: bool = False

    def __post_init__(self) -> None:
        if not 0 <= self.self_index < self.peer_count:
            raise ValueError(
                f"self_index {self.self_index} outside [0, {self.peer_count})"
            )

    @property
    def peer_count(self) -> int:
        return max(len(self.peers), 1)

    @classmethod
    def single(cls, self_id: str) -> "PeerSet":
        """Fallback: assume this process is alone."""
        return cls(peers=(self_id,), self_index=0, degraded=True)


def peer_sort_key(name: str) -> Tuple[int, int, str]:
    """
    Total, stable ordering key for peer identifiers.

    Names ending in digits (StatefulSet ordinals: parking-api-0,
    parking-api-1, parking-api-10) sort first by that number; names
    without a numeric suffix sort after them, lexicographically. The
    full name breaks ties so the order is total.
    """
    match = _NUMERIC_SUFFIX.search(name)
    if match:
        return (0, int(match.group(1)), name)
    return (1, 0, name)


def order_peers(
    items: Iterable[Dict[str, Any]],
    role_label: str,
    label_key: str = "app",
) -> List[str]:
    """
    Filter pod items to the role and return their names in agreed order.

    Args:
        items: Pod objects from the API's `items` list
        role_label: Required value of metadata.labels[label_key]
        label_key: Label carrying the role

    Raises:
        DirectoryUnavailableError: If an item lacks metadata.name
    """
    names = []
    for item in items:
        metadata = item.get("metadata") if isinstance(item, dict) else None
        if not isinstance(metadata, dict) or not metadata.get("name"):
            raise DirectoryUnavailableError("Malformed pod entry in directory listing")
        labels = metadata.get("labels") or {}
        if labels.get(label_key) == role_label:
            names.append(str(metadata["name"]))
    return sorted(set(names), key=peer_sort_key)


def locate_self(peers: List[str], self_id: str) -> Optional[int]:
    """Position of self_id in peers, or None when absent."""
    try:
        return peers.index(self_id)
    except ValueError:
        return None


class PeerDirectory(LoggedClass):
    """
    Async client for the pod listing used to discover peers.

    Usage:
        async with PeerDirectory(config, self_id="parking-api-1") as directory:
            peer_set = await directory.list_peers()
            peer_set.self_index, peer_set.peer_count

    Configuration:
        api_url: Kubernetes API server (in-cluster default)
        namespace: Namespace to list pods in
        role_label / role_label_key: Label selecting this workload's replicas
        token_path / ca_cert_path: Mounted service-account credentials
    """

    log_component = "directory"

    def __init__(
        self,
        config: DirectoryConfig,
        self_id: str,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config = config
        self.producer_id = self_id
        self.namespace = config.namespace
        self._session = session
        self._owns_session = session is None
        self._ssl_context: Optional[ssl.SSLContext] = None
        super().__init__()

    async def __aenter__(self) -> "PeerDirectory":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Accept": "application/json"},
            )
            self._owns_session = True

    async def close(self) -> None:
        """Close the HTTP session if this directory created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    @property
    def pods_url(self) -> str:
        return f"{self.config.api_url.rstrip('/')}/api/v1/namespaces/{self.namespace}/pods"

    def _read_token(self) -> str:
        path = Path(self.config.token_path)
        try:
            token = path.read_text(encoding="utf-8").strip()
        except OSError as e:
            raise DirectoryUnavailableError(
                f"Cannot read service account token: {path}", cause=e
            ) from e
        if not token:
            raise DirectoryUnavailableError(f"Service account token is empty: {path}")
        return token

    def _get_ssl_context(self) -> Optional[ssl.SSLContext]:
        """Verify against the mounted cluster CA when present."""
        if self._ssl_context is None:
            ca_path = Path(self.config.ca_cert_path)
            if ca_path.exists():
                self._ssl_context = ssl.create_default_context(cafile=str(ca_path))
        return self._ssl_context

    async def _fetch_pod_items(self, role_label: str) -> List[Dict[str, Any]]:
        """
        GET the pod list.

        Raises:
            DirectoryUnavailableError: On any transport, HTTP or payload problem
        """
        await self._ensure_session()
        assert self._session is not None  # for mypy

        headers = {"Authorization": f"Bearer {self._read_token()}"}
        params = {"labelSelector": f"{self.config.role_label_key}={role_label}"}

        try:
            async with self._session.get(
                self.pods_url,
                headers=headers,
                params=params,
                ssl=self._get_ssl_context() or True,
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
            ) as response:
                if response.status != 200:
                    raise DirectoryUnavailableError(
                        f"Pod listing failed with HTTP {response.status}",
                        context={"http_status": response.status},
                    )
                data = await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise DirectoryUnavailableError(
                f"Pod listing timed out after {self.config.timeout_seconds}s", cause=e
            ) from e
        except (aiohttp.ClientError, ValueError) as e:
            raise DirectoryUnavailableError(f"Pod listing failed: {e}", cause=e) from e

        items = data.get("items") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise DirectoryUnavailableError("Pod listing response has no items list")
        return items

    async def list_peers(self, role_label: Optional[str] = None) -> PeerSet:
        """
        Discover same-role peers and this process's position among them.

        Never raises for directory problems: on any failure returns
        PeerSet.single(self_id) (peer_count 1, self_index 0).

        Args:
            role_label: Role to match (defaults to the configured label)
        """
        role_label = role_label or self.config.role_label

        try:
            items = await self._fetch_pod_items(role_label)
            peers = order_peers(items, role_label, self.config.role_label_key)
        except Exception as e:
            self._log_exception(
                e,
                "Peer directory unavailable, assuming single peer",
                level=logging.WARNING,
                include_traceback=False,
                role_label=role_label,
            )
            record_directory_fallback("error")
            peer_set = PeerSet.single(self.producer_id)
            record_peer_set(peer_set.peer_count, peer_set.self_index)
            return peer_set

        index = locate_self(peers, self.producer_id)
        if index is None:
            # Listing not yet consistent with this pod's own existence
            self._log(
                logging.WARNING,
                "Self not found in peer list, using position 0",
                role_label=role_label,
                peers=peers,
                peer_count=len(peers),
            )
            record_directory_fallback("self_missing")
            index = 0

        peer_set = PeerSet(peers=tuple(peers), self_index=index)
        record_peer_set(peer_set.peer_count, peer_set.self_index)
        self._log(
            logging.INFO,
            "Peers discovered",
            role_label=role_label,
            peers=peers,
            peer_count=peer_set.peer_count,
            self_index=peer_set.self_index,
        )
        return peer_set

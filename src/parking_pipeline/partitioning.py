"""
Range partitioning across peers.

Every replica runs compute_range() independently with the same inputs
(upstream total, its own position, peer count) and gets a contiguous
1-based window. For any total T and peer count P the windows of
positions 0..P-1 cover [1, T] exactly once:

    size  = ceil(T / P)
    start = index * size + 1
    end   = min((index + 1) * size, T)

Only the last non-empty window can be shorter than `size`. When P > T the
trailing positions get empty windows (start > end) and fetch nothing.
"""

from dataclasses import dataclass
from typing import Iterator, List, Tuple


@dataclass(frozen=True)
class WorkRange:
    """Inclusive 1-based index window. Empty when end < start."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 1:
            raise ValueError(f"WorkRange start must be >= 1, got {self.start}")

    @property
    def is_empty(self) -> bool:
        return self.end < self.start

    def __len__(self) -> int:
        return max(0, self.end - self.start + 1)

    def __iter__(self) -> Iterator[int]:
        return iter(range(self.start, self.end + 1))

    def __str__(self) -> str:
        return f"[{self.start}, {self.end}]"


def range_size(total: int, peer_count: int) -> int:
    """Width of every window but possibly the last: ceil(total / peer_count)."""
    return -(-total // peer_count)


def compute_range(total: int, self_index: int, peer_count: int) -> WorkRange:
    """
    Compute this peer's window of [1, total].

    Pure function: identical inputs always produce identical output.

    Args:
        total: Upstream record count (>= 0)
        self_index: Zero-based position of this peer (>= 0). Values past
            the end of the peer list are clamped to the last position.
        peer_count: Number of peers (>= 1)

    Returns:
        WorkRange, empty when total is 0 or there is nothing left for
        this position

    Raises:
        ValueError: On negative total or index, or peer_count < 1
    """
    if total < 0:
        raise ValueError(f"total must be >= 0, got {total}")
    if peer_count < 1:
        raise ValueError(f"peer_count must be >= 1, got {peer_count}")
    if self_index < 0:
        raise ValueError(f"self_index must be >= 0, got {self_index}")

    if self_index >= peer_count:
        self_index = peer_count - 1

    if total == 0:
        return WorkRange(start=1, end=0)

    size = range_size(total, peer_count)
    start = self_index * size + 1
    end = min((self_index + 1) * size, total)
    return WorkRange(start=start, end=end)


def partition_all(total: int, peer_count: int) -> List[WorkRange]:
    """Every peer's window, in peer order."""
    return [compute_range(total, i, peer_count) for i in range(peer_count)]


def iter_pages(start: int, end: int, max_batch_size: int) -> Iterator[Tuple[int, int]]:
    """
    Split the inclusive window [start, end] into consecutive pages.

    Each page is at most max_batch_size wide; pages come out in ascending
    order. Yields nothing when start > end.
    """
    if max_batch_size < 1:
        raise ValueError(f"max_batch_size must be >= 1, got {max_batch_size}")
    page_start = start
    while page_start <= end:
        page_end = min(page_start + max_batch_size - 1, end)
        yield page_start, page_end
        page_start = page_end + 1

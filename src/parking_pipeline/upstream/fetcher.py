"""
Paged retrieval of a window from the upstream API.
"""

import logging
from typing import List, Optional

from parking_pipeline.common.logging import LoggedClass
from parking_pipeline.common.retry import NO_RETRY, RetryConfig, call_with_retry
from parking_pipeline.config import UpstreamConfig
from parking_pipeline.partitioning import iter_pages
from parking_pipeline.schemas import Record
from parking_pipeline.upstream.client import UpstreamClient


class PagedFetcher(LoggedClass):
    """
    Retrieves every record in an inclusive window, page by page.

    Pages are requested sequentially in ascending order and concatenated
    in that order. A failed page (after any configured retries) fails the
    whole window: callers never see a partial result.
    """

    log_component = "fetcher"

    def __init__(
        self,
        client: UpstreamClient,
        max_batch_size: int = 1000,
        retry: RetryConfig = NO_RETRY,
    ):
        if max_batch_size < 1:
            raise ValueError(f"max_batch_size must be >= 1, got {max_batch_size}")
        self.client = client
        self.max_batch_size = max_batch_size
        self.retry = retry
        super().__init__()

    @classmethod
    def from_config(
        cls, client: UpstreamClient, config: Optional[UpstreamConfig] = None
    ) -> "PagedFetcher":
        config = config or client.config
        retry = RetryConfig(
            max_attempts=config.page_max_attempts,
            base_delay=config.page_backoff_seconds,
        )
        return cls(client, max_batch_size=config.max_batch_size, retry=retry)

    async def fetch_range(self, start: int, end: int) -> List[Record]:
        """
        All records in [start, end], in index order.

        Returns [] without any upstream call when start > end.

        Raises:
            UpstreamPageError: On the first page that cannot be fetched
        """
        records: List[Record] = []
        page_count = 0

        for page_start, page_end in iter_pages(start, end, self.max_batch_size):
            rows = await call_with_retry(
                lambda: self.client.fetch_page(page_start, page_end),
                config=self.retry,
                operation="fetch_page",
            )
            records.extend(rows)
            page_count += 1

        if page_count:
            self._log(
                logging.INFO,
                "Window fetched",
                range_start=start,
                range_end=end,
                page_count=page_count,
                records_fetched=len(records),
            )
        return records

"""
Publishing of work results to the message bus.
"""

import itertools
import logging
import time
from typing import Callable, Dict, Optional

from parking_pipeline.common.exceptions import PipelineError
from parking_pipeline.common.logging import LoggedClass
from parking_pipeline.producer import BaseKafkaProducer
from parking_pipeline.schemas import WorkResultMessage


class Publisher(LoggedClass):
    """
    Sends one WorkResultMessage per completed cycle.

    Delivery is at-least-once at best: a failed publish is reported as
    False and not retried here. The next cycle recomputes and republishes.
    """

    log_component = "publisher"

    def __init__(
        self,
        producer: BaseKafkaProducer,
        producer_id: str,
        clock: Callable[[], float] = time.time,
    ):
        self.producer = producer
        self.producer_id = producer_id
        self._clock = clock
        self._sequence = itertools.count()
        super().__init__()

    def build_message_key(self, result: WorkResultMessage) -> str:
        """
        `{producer_id}-{start}-{end}-{millis}-{seq}`.

        The sequence is per process and monotonic, so two publishes of the
        same window in the same millisecond still get distinct keys.
        """
        millis = int(self._clock() * 1000)
        return (
            f"{result.producer_id}-{result.start_index}-{result.end_index}"
            f"-{millis}-{next(self._sequence)}"
        )

    @staticmethod
    def build_headers(result: WorkResultMessage) -> Dict[str, str]:
        return {
            "producer_id": result.producer_id,
            "range": f"{result.start_index}-{result.end_index}",
        }

    async def publish(self, topic: str, result: WorkResultMessage) -> bool:
        """
        Send result to topic.

        Returns:
            True when the broker acknowledged the message, False on any
            transport failure (already logged and counted)
        """
        key = self.build_message_key(result)
        try:
            metadata = await self.producer.send(
                topic,
                key=key,
                value=result,
                headers=self.build_headers(result),
            )
        except (PipelineError, RuntimeError) as e:
            self._log_exception(
                e,
                "Publish failed",
                level=logging.WARNING,
                include_traceback=False,
                topic=topic,
                key=key,
                range_start=result.start_index,
                range_end=result.end_index,
            )
            return False

        self._log(
            logging.INFO,
            "Published work result",
            topic=topic,
            key=key,
            partition=getattr(metadata, "partition", None),
            offset=getattr(metadata, "offset", None),
            range_start=result.start_index,
            range_end=result.end_index,
            records_matched=result.record_count,
        )
        return True


def make_result(
    producer_id: str,
    start: int,
    end: int,
    records: Optional[list] = None,
) -> WorkResultMessage:
    """Convenience constructor used by the orchestrator."""
    return WorkResultMessage(
        producer_id=producer_id,
        start_index=start,
        end_index=end,
        records=records or [],
    )

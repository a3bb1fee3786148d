"""
Kafka producer for work result messages.

One aiokafka producer per worker process. Every send goes through the
`kafka_producer` circuit breaker so a dead cluster is rejected fast
instead of blocking each cycle for the full request timeout.
"""

import logging
from typing import Any, Dict, Optional

from aiokafka import AIOKafkaProducer
from aiokafka.structs import RecordMetadata
from pydantic import BaseModel

from parking_pipeline.common.exceptions import CircuitOpenError, PublishError
from parking_pipeline.common.resilience import (
    KAFKA_CIRCUIT_CONFIG,
    CircuitBreaker,
    get_circuit_breaker,
)
from parking_pipeline.config import KafkaConfig
from parking_pipeline.metrics import (
    record_message_produced,
    record_producer_error,
    update_circuit_breaker_state,
    update_connection_status,
)

logger = logging.getLogger(__name__)


class BaseKafkaProducer:
    """Async producer sending pydantic models as alias-keyed JSON."""

    def __init__(
        self,
        config: KafkaConfig,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.config = config
        self._producer: Optional[AIOKafkaProducer] = None
        self._circuit_breaker = circuit_breaker or get_circuit_breaker(
            "kafka_producer",
            KAFKA_CIRCUIT_CONFIG,
            on_state_change=lambda _old, new: update_circuit_breaker_state(
                "kafka_producer", new.value
            ),
        )

    def _client_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "bootstrap_servers": self.config.bootstrap_server_list,
            "client_id": self.config.client_id,
            "security_protocol": self.config.security_protocol,
            "acks": self.config.acks,
            "request_timeout_ms": self.config.request_timeout_ms,
        }
        if self.config.security_protocol.startswith("SASL"):
            options["sasl_mechanism"] = self.config.sasl_mechanism
            if self.config.sasl_mechanism == "PLAIN":
                options["sasl_plain_username"] = self.config.sasl_plain_username
                options["sasl_plain_password"] = self.config.sasl_plain_password
        return options

    async def start(self) -> None:
        """Connect to the cluster; connection errors propagate to the caller."""
        if self._producer is not None:
            return

        producer = AIOKafkaProducer(**self._client_options())
        try:
            await producer.start()
        except Exception:
            update_connection_status("producer", connected=False)
            raise

        self._producer = producer
        update_connection_status("producer", connected=True)
        logger.info(
            "Kafka producer connected",
            extra={
                "bootstrap_servers": self.config.bootstrap_servers,
                "security_protocol": self.config.security_protocol,
                "acks": self.config.acks,
            },
        )

    async def stop(self) -> None:
        """Drain pending sends and disconnect. Calling it twice is a no-op."""
        producer, self._producer = self._producer, None
        if producer is None:
            return

        try:
            # stop() waits for in-flight batches before closing
            await producer.stop()
        except Exception as e:
            logger.error(
                "Kafka producer did not stop cleanly",
                extra={"error_message": str(e)},
                exc_info=True,
            )
            raise
        finally:
            update_connection_status("producer", connected=False)
        logger.info("Kafka producer disconnected")

    async def send(
        self,
        topic: str,
        key: str,
        value: BaseModel,
        headers: Optional[Dict[str, str]] = None,
    ) -> RecordMetadata:
        """
        Send one message and wait for the broker acknowledgement.

        Raises:
            RuntimeError: If start() has not completed
            CircuitOpenError: If the producer circuit is open
            PublishError: If the broker send fails
        """
        producer = self._producer
        if producer is None:
            raise RuntimeError("Producer not started. Call start() first.")

        payload = value.model_dump_json(by_alias=True).encode("utf-8")
        header_list = [(k, v.encode("utf-8")) for k, v in (headers or {}).items()] or None

        async def _send():
            return await producer.send_and_wait(
                topic,
                key=key.encode("utf-8"),
                value=payload,
                headers=header_list,
            )

        try:
            metadata = await self._circuit_breaker.call_async(_send)
        except CircuitOpenError:
            record_message_produced(topic, len(payload), success=False)
            record_producer_error(topic, "CircuitOpenError")
            raise
        except Exception as e:
            record_message_produced(topic, len(payload), success=False)
            record_producer_error(topic, type(e).__name__)
            raise PublishError(f"Failed to send message to {topic}", cause=e) from e

        record_message_produced(topic, len(payload), success=True)
        logger.debug(
            "Message acknowledged",
            extra={
                "topic": metadata.topic,
                "partition": metadata.partition,
                "offset": metadata.offset,
                "value_size": len(payload),
            },
        )
        return metadata

    @property
    def is_started(self) -> bool:
        return self._producer is not None


__all__ = [
    "BaseKafkaProducer",
]

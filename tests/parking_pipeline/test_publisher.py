"""Tests for Publisher."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from parking_pipeline.common.exceptions import CircuitOpenError, PublishError
from parking_pipeline.publisher import Publisher, make_result


@pytest.fixture
def mock_producer():
    """Create mock Kafka producer."""
    mock = AsyncMock()
    mock.send = AsyncMock(return_value=MagicMock(partition=0, offset=42))
    return mock


@pytest.fixture
def result():
    return make_result("parking-api-0", 1, 34, [{"ADDR": "중구 명동"}])


class TestMessageKey:
    """Tests for build_message_key()."""

    def test_key_format(self, mock_producer, result):
        publisher = Publisher(mock_producer, "parking-api-0", clock=lambda: 1735119075.5)

        assert publisher.build_message_key(result) == "parking-api-0-1-34-1735119075500-0"

    def test_keys_unique_within_same_millisecond(self, mock_producer, result):
        publisher = Publisher(mock_producer, "parking-api-0", clock=lambda: 1735119075.0)

        keys = {publisher.build_message_key(result) for _ in range(100)}

        assert len(keys) == 100


class TestPublish:
    """Tests for publish()."""

    @pytest.mark.asyncio
    async def test_success_returns_true(self, mock_producer, result):
        publisher = Publisher(mock_producer, "parking-api-0", clock=lambda: 1.0)

        assert await publisher.publish("parking-topic", result) is True

        mock_producer.send.assert_awaited_once()
        call = mock_producer.send.await_args
        assert call.args == ("parking-topic",)
        assert call.kwargs["key"] == "parking-api-0-1-34-1000-0"
        assert call.kwargs["value"] is result
        assert call.kwargs["headers"] == {"producer_id": "parking-api-0", "range": "1-34"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            PublishError("broker unavailable"),
            CircuitOpenError("kafka_producer", retry_after=30.0),
            RuntimeError("Producer not started. Call start() first."),
        ],
        ids=["publish-error", "circuit-open", "not-started"],
    )
    async def test_failure_returns_false(self, mock_producer, result, error):
        mock_producer.send = AsyncMock(side_effect=error)
        publisher = Publisher(mock_producer, "parking-api-0")

        assert await publisher.publish("parking-topic", result) is False

    def test_make_result_defaults_to_no_records(self):
        message = make_result("parking-api-2", 69, 101)

        assert message.records == []
        assert message.end_index == 101

"""
Work result message schema.

One WorkResultMessage is produced per completed cycle. The JSON wire
format keeps the camelCase names existing consumers read:

    {"podName": "...", "startIndex": 1, "endIndex": 34,
     "data": [...], "producedAt": "2024-12-25T10:31:15+00:00"}
"""

from datetime import datetime, timezone
from typing import Any, Dict, List

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)

Record = Dict[str, Any]


class WorkResultMessage(BaseModel):
    """Filtered records for one peer's window.

    Attributes:
        producer_id: Identity of the producing process (pod name)
        start_index: First index of the window (1-based, inclusive)
        end_index: Last index of the window (inclusive)
        records: Upstream items that passed the filter, in upstream order
        produced_at: Timestamp when the message was built

    Example:
        >>> message = WorkResultMessage(
        ...     producer_id="parking-api-0",
        ...     start_index=1,
        ...     end_index=34,
        ...     records=[{"PKLT_NM": "종묘주차장", "ADDR": "종로구 훈정동 2-0"}],
        ... )
        >>> message.model_dump_json(by_alias=True)
    """

    model_config = ConfigDict(populate_by_name=True)

    producer_id: str = Field(
        ...,
        alias="podName",
        description="Identity of the producing process",
        min_length=1,
    )
    start_index: int = Field(
        ...,
        alias="startIndex",
        description="First index of the window (1-based, inclusive)",
        ge=1,
    )
    end_index: int = Field(
        ...,
        alias="endIndex",
        description="Last index of the window (inclusive)",
        ge=0,
    )
    records: List[Record] = Field(
        default_factory=list,
        alias="data",
        description="Records that passed the filter",
    )
    produced_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        alias="producedAt",
        description="Timestamp when the message was built",
    )

    @field_validator("producer_id")
    @classmethod
    def validate_producer_id(cls, v: str) -> str:
        """Ensure producer id is not whitespace-only."""
        if not v.strip():
            raise ValueError("producer_id cannot be empty or whitespace")
        return v.strip()

    @model_validator(mode="after")
    def validate_window(self) -> "WorkResultMessage":
        if self.end_index < self.start_index and self.records:
            raise ValueError("records present for an empty window")
        return self

    @field_serializer("produced_at")
    def serialize_timestamp(self, timestamp: datetime) -> str:
        """Serialize datetime to ISO 8601 format."""
        return timestamp.isoformat()

    @property
    def record_count(self) -> int:
        return len(self.records)

    def to_json_bytes(self) -> bytes:
        """Wire encoding used by the producer."""
        return self.model_dump_json(by_alias=True).encode("utf-8")

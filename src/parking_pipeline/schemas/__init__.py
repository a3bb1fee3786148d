"""Pydantic message schemas."""

from parking_pipeline.schemas.results import Record, WorkResultMessage

__all__ = [
    "Record",
    "WorkResultMessage",
]

"""
Record filtering.

A predicate is any callable taking a record and returning bool. The only
built-in predicate is address_contains(), which matches on a free-text
field containing one of a list of terms (district names by default).
"""

from typing import Callable, Iterable, List, Optional, Sequence

from parking_pipeline.config import WorkerConfig
from parking_pipeline.schemas import Record

Predicate = Callable[[Record], bool]


def address_contains(terms: Sequence[str], field: str = "ADDR") -> Predicate:
    """
    Build a predicate matching records whose `field` contains any term.

    The field value is coerced with str(); a record without the field (or
    with a None value) never matches. An empty term list matches nothing.
    """
    terms = tuple(t for t in terms if t)

    def predicate(record: Record) -> bool:
        value = record.get(field)
        if value is None:
            return False
        text = str(value)
        return any(term in text for term in terms)

    return predicate


def filter_records(records: Iterable[Record], predicate: Predicate) -> List[Record]:
    """Records satisfying predicate, in input order."""
    return [record for record in records if predicate(record)]


class RecordFilter:
    """Configured predicate applied to fetched records."""

    def __init__(self, predicate: Predicate, description: Optional[str] = None):
        self.predicate = predicate
        self.description = description or getattr(predicate, "__name__", "predicate")

    @classmethod
    def from_config(cls, config: WorkerConfig) -> "RecordFilter":
        return cls(
            address_contains(config.target_districts, config.filter_field),
            description=f"{config.filter_field} contains any of {config.target_districts}",
        )

    def apply(self, records: Iterable[Record]) -> List[Record]:
        return filter_records(records, self.predicate)

    def __call__(self, records: Iterable[Record]) -> List[Record]:
        return self.apply(records)

    def __repr__(self) -> str:
        return f"RecordFilter({self.description})"

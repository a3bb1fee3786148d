"""Tests for record filtering."""

from parking_pipeline.config import WorkerConfig
from parking_pipeline.filters import RecordFilter, address_contains, filter_records


class TestAddressContains:
    """Tests for the address_contains predicate."""

    def test_single_term_selects_matching_record(self):
        records = [{"ADDR": "A-district"}, {"ADDR": "B-district"}]

        result = filter_records(records, address_contains(["A"]))

        assert result == [{"ADDR": "A-district"}]

    def test_any_term_matches(self):
        predicate = address_contains(["중구", "종로구"])

        assert predicate({"ADDR": "서울특별시 종로구 훈정동"})
        assert predicate({"ADDR": "중구 남대문로"})
        assert not predicate({"ADDR": "강남구 역삼동"})

    def test_missing_field_does_not_match(self):
        predicate = address_contains(["중구"])

        assert not predicate({"PKLT_NM": "중구청"})
        assert not predicate({"ADDR": None})

    def test_non_string_values_are_coerced(self):
        assert address_contains(["12"])({"ADDR": 1234})

    def test_empty_terms_match_nothing(self):
        assert filter_records([{"ADDR": "중구"}], address_contains([])) == []

    def test_custom_field(self):
        predicate = address_contains(["공영"], field="PKLT_NM")

        assert predicate({"PKLT_NM": "종묘 공영주차장"})


class TestFilterRecords:
    """Tests for filter_records()."""

    def test_preserves_input_order(self):
        records = [{"ADDR": f"중구 {i}"} for i in range(5)]

        assert filter_records(records, lambda r: True) == records

    def test_empty_input(self):
        assert filter_records([], lambda r: True) == []


class TestRecordFilter:
    """Tests for RecordFilter."""

    def test_from_config_uses_target_districts(self):
        config = WorkerConfig(pod_name="p-0", target_districts=["용산구"])
        record_filter = RecordFilter.from_config(config)

        records = [{"ADDR": "용산구 한강로"}, {"ADDR": "마포구 합정동"}]

        assert record_filter.apply(records) == [{"ADDR": "용산구 한강로"}]
        assert record_filter(records) == record_filter.apply(records)
        assert "용산구" in repr(record_filter)

    def test_default_districts(self):
        record_filter = RecordFilter.from_config(WorkerConfig(pod_name="p-0"))

        assert record_filter.apply([{"ADDR": "관악구 신림동"}, {"ADDR": "노원구 상계동"}]) == [
            {"ADDR": "관악구 신림동"}
        ]

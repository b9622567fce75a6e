import pytest

from hub.aggregations import AggregationConfig, apply_aggregations, apply_filters, AggregationFilter
from hub.errors import InputError
from hub.mapping import FieldMapping, apply_mapping, extract_records, normalize, record_count

MAPPING = [FieldMapping(source_field="key", target_field="id"), FieldMapping(source_field="fields", target_field="details")]


def test_apply_mapping_empty_records():
    assert apply_mapping([], MAPPING) == []


def test_apply_mapping_identity_on_empty_mapping():
    records = [{"key": "OPS-1"}, {"key": "OPS-2"}]
    assert apply_mapping(records, []) is records


def test_apply_mapping_renames_and_passes_through():
    records = [{"key": "OPS-1", "fields": {"summary": "x"}, "self": "https://jira/1"}]
    assert apply_mapping(records, MAPPING) == [
        {"id": "OPS-1", "details": {"summary": "x"}, "self": "https://jira/1"}
    ]


def test_apply_mapping_does_not_coerce_values():
    records = [{"count": "7", "ok": None}, "not-a-record"]
    mapped = apply_mapping(records, [FieldMapping(source_field="count", target_field="total")])
    assert mapped == [{"total": "7", "ok": None}, "not-a-record"]


def test_extract_records():
    data = {"total": 2, "issues": [{"key": "A"}, {"key": "B"}]}
    assert extract_records(data, "$.issues") == [{"key": "A"}, {"key": "B"}]
    assert extract_records(data, "$.issues[*].key") == ["A", "B"]
    assert extract_records(data, "$.missing") == []
    assert extract_records(data, None) is data


def test_extract_records_invalid_path():
    with pytest.raises(InputError):
        extract_records({"a": 1}, "$.[")


def test_normalize_single_object_and_list():
    assert normalize({"key": "A", "x": 1}, MAPPING) == {"id": "A", "x": 1}
    assert normalize({"issues": [{"key": "A"}]}, MAPPING, "$.issues") == [{"id": "A"}]


def test_normalize_with_aggregations():
    data = {"results": [
        {"severity": "high", "count": 3},
        {"severity": "low", "count": 1},
        {"severity": "high", "count": 2},
    ]}
    config = AggregationConfig.model_validate({
        "group_by": ["severity"],
        "metrics": [{"field": "count", "function": "sum", "alias": "total"}],
        "sort": [{"field": "total", "direction": "desc"}],
    })
    result = normalize(data, aggregations=config)
    assert result["aggregated_data"] == [
        {"severity": "high", "total": 5.0, "_group_size": 2},
        {"severity": "low", "total": 1.0, "_group_size": 1},
    ]
    assert result["total_records"] == 3
    assert record_count(result) == 2


def test_aggregation_metrics_without_grouping():
    records = [{"ms": 10}, {"ms": 30}, {"ms": None}, {"ms": 20}]
    config = AggregationConfig.model_validate({
        "metrics": [
            {"field": "ms", "function": "avg"},
            {"field": "ms", "function": "max"},
            {"field": "ms", "function": "median"},
            {"function": "count", "alias": "n"},
        ],
        "limit": 1,
    })
    result = apply_aggregations(records, config)
    assert result["aggregated_data"] == [{"avg_ms": 20.0, "max_ms": 30.0, "median_ms": 20.0, "n": 4}]


def test_filters_with_nested_fields():
    records = [
        {"fields": {"status": "Open", "votes": 5}},
        {"fields": {"status": "Closed", "votes": 1}},
        {"fields": {"status": "Open", "votes": 0}},
    ]
    filters = [
        AggregationFilter(field="fields.status", operator="=", value="Open"),
        AggregationFilter(field="fields.votes", operator="greater_than", value=1),
    ]
    assert apply_filters(records, filters) == [records[0]]


def test_record_count():
    assert record_count(None) == 0
    assert record_count([1, 2, 3]) == 3
    assert record_count({"version": "9.1"}) == 1

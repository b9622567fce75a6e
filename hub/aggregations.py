"""
记录聚合：过滤 -> 分组 / 指标 -> 排序 -> 截断。
"""

import logging
import statistics
from typing import Any, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class AggregationFilter(BaseModel):
    field: str
    operator: str = "equals"
    value: Any = None


class AggregationMetric(BaseModel):
    field: str = ""
    function: str
    alias: Optional[str] = None
    separator: str = ", "

    @property
    def output_field(self) -> str:
        return self.alias or f"{self.function}_{self.field}"


class SortSpec(BaseModel):
    field: str
    direction: Literal["asc", "desc"] = "asc"


class AggregationConfig(BaseModel):
    group_by: List[str] = Field(default_factory=list)
    metrics: List[AggregationMetric] = Field(default_factory=list)
    filters: List[AggregationFilter] = Field(default_factory=list)
    sort: List[SortSpec] = Field(default_factory=list)
    limit: Optional[int] = Field(default=None, ge=0)


def get_nested(record: Any, path: str) -> Any:
    """按 a.b.c 取嵌套字段，不存在返回 None。"""
    current = record
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        else:
            return None
    return current


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _numbers(records: List[Any], field: str) -> List[float]:
    return [n for n in (_number(get_nested(r, field)) for r in records) if n is not None]


# ── 过滤 ──────────────────────────────────────────────

def _compare(op: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def check(actual: Any, expected: Any) -> bool:
        a, b = _number(actual), _number(expected)
        return a is not None and b is not None and op(a, b)
    return check


def _text(value: Any) -> str:
    return "" if value is None else str(value).lower()


_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "equals": lambda a, b: a == b,
    "not_equals": lambda a, b: a != b,
    "greater_than": _compare(lambda a, b: a > b),
    "less_than": _compare(lambda a, b: a < b),
    "greater_equal": _compare(lambda a, b: a >= b),
    "less_equal": _compare(lambda a, b: a <= b),
    "contains": lambda a, b: _text(b) in _text(a),
    "not_contains": lambda a, b: _text(b) not in _text(a),
    "starts_with": lambda a, b: _text(a).startswith(_text(b)),
    "ends_with": lambda a, b: _text(a).endswith(_text(b)),
    "in": lambda a, b: isinstance(b, list) and a in b,
    "not_in": lambda a, b: not isinstance(b, list) or a not in b,
    "is_null": lambda a, b: a is None,
    "is_not_null": lambda a, b: a is not None,
}
_ALIASES = {"=": "equals", "!=": "not_equals", ">": "greater_than", "<": "less_than",
            ">=": "greater_equal", "<=": "less_equal"}


def apply_filters(records: List[Any], filters: List[AggregationFilter]) -> List[Any]:
    def keep(record: Any) -> bool:
        for f in filters:
            op = _OPERATORS.get(_ALIASES.get(f.operator, f.operator))
            if op is None:
                logger.warning(f"未知的过滤操作符: {f.operator}，已忽略")
                continue
            if not op(get_nested(record, f.field), f.value):
                return False
        return True
    return [r for r in records if keep(r)]


# ── 指标 ──────────────────────────────────────────────

def _median(values: List[float]) -> Optional[float]:
    return statistics.median(values) if values else None


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0


_METRICS: Dict[str, Callable[[List[Any], AggregationMetric], Any]] = {
    "count": lambda rows, m: len(rows),
    "count_distinct": lambda rows, m: len({repr(get_nested(r, m.field)) for r in rows}),
    "sum": lambda rows, m: sum(_numbers(rows, m.field)),
    "avg": lambda rows, m: _mean(_numbers(rows, m.field)),
    "min": lambda rows, m: min(_numbers(rows, m.field), default=None),
    "max": lambda rows, m: max(_numbers(rows, m.field), default=None),
    "median": lambda rows, m: _median(_numbers(rows, m.field)),
    "concat": lambda rows, m: m.separator.join(
        str(v) for v in (get_nested(r, m.field) for r in rows) if v is not None
    ),
}
_METRICS["average"] = _METRICS["avg"]


def calculate_metrics(records: List[Any], metrics: List[AggregationMetric]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for metric in metrics:
        func = _METRICS.get(metric.function.lower())
        if func is None:
            logger.warning(f"未知的聚合函数: {metric.function}")
            result[metric.output_field] = None
            continue
        result[metric.output_field] = func(records, metric)
    return result


def _group_value(value: Any) -> str:
    return "" if value is None else str(value)


def group_records(records: List[Any], group_by: List[str], metrics: List[AggregationMetric]) -> List[Dict[str, Any]]:
    groups: Dict[tuple, List[Any]] = {}
    for record in records:
        key = tuple(_group_value(get_nested(record, f)) for f in group_by)
        groups.setdefault(key, []).append(record)

    result = []
    for key, rows in groups.items():
        entry: Dict[str, Any] = dict(zip(group_by, key))
        entry.update(calculate_metrics(rows, metrics))
        entry["_group_size"] = len(rows)
        result.append(entry)
    return result


# ── 排序 ──────────────────────────────────────────────

def _rank(value: Any) -> tuple:
    number = _number(value)
    if number is not None:
        return (0, number, "")
    if value is None:
        return (2, 0.0, "")
    return (1, 0.0, str(value))


def apply_sort(records: List[Any], sort: List[SortSpec]) -> List[Any]:
    result = list(records)
    # 逐字段稳定排序，最后一个排序字段优先级最低
    for order in reversed(sort):
        result.sort(key=lambda r: _rank(get_nested(r, order.field)), reverse=order.direction == "desc")
    return result


def apply_aggregations(records: List[Any], config: AggregationConfig) -> Dict[str, Any]:
    processed = list(records)
    if config.filters:
        processed = apply_filters(processed, config.filters)

    if config.group_by:
        processed = group_records(processed, config.group_by, config.metrics)
    elif config.metrics:
        processed = [calculate_metrics(processed, config.metrics)]

    if config.sort:
        processed = apply_sort(processed, config.sort)
    if config.limit:
        processed = processed[:config.limit]

    return {
        "aggregated_data": processed,
        "total_records": len(records),
        "processed_records": len(processed),
        "aggregation_summary": {
            "grouped_by": list(config.group_by),
            "metrics_calculated": [f"{m.function}({m.field})" for m in config.metrics],
            "filters_applied": len(config.filters),
            "sorted_by": [s.model_dump() for s in config.sort],
            "limited_to": config.limit,
        },
    }

"""
字段映射：将不同上游的记录结构统一为控件需要的字段名。

只做重命名与透传，不做类型转换。
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from jsonpath_ng.ext import parse as jp_parse
from pydantic import BaseModel

from hub.aggregations import AggregationConfig, apply_aggregations
from hub.errors import InputError

logger = logging.getLogger(__name__)


class FieldMapping(BaseModel):
    source_field: str
    target_field: str


def _mapping_table(mapping: Iterable[FieldMapping]) -> Dict[str, str]:
    return {m.source_field: m.target_field for m in mapping}


def map_record(record: Any, table: Dict[str, str]) -> Any:
    if not isinstance(record, dict) or not table:
        return record
    return {table.get(key, key): value for key, value in record.items()}


def apply_mapping(records: List[Any], mapping: Iterable[FieldMapping]) -> List[Any]:
    """重命名映射中的字段，其他字段原样保留；mapping 为空时原样返回。"""
    table = _mapping_table(mapping)
    if not table:
        return records
    return [map_record(r, table) for r in records]


# ── JSONPath 选取 ─────────────────────────────────────

def extract_records(data: Any, data_path: Optional[str]) -> Any:
    """
    用 JSONPath 选出记录数组，例如 "$.issues" 或 "$.data.items[*]"。
    单个匹配且值为列表时返回该列表，否则返回所有匹配值。
    """
    if not data_path:
        return data
    try:
        expr = jp_parse(data_path)
    except Exception as e:
        raise InputError(f"Invalid data_path '{data_path}': {e}")

    matches = expr.find(data)
    if not matches:
        logger.debug(f"JSONPath '{data_path}' 无匹配")
        return []
    if len(matches) == 1 and isinstance(matches[0].value, list):
        return matches[0].value
    return [m.value for m in matches]


def _detect_records(data: Any) -> List[Any]:
    # 常见的结果包装：{"results": [...]} / Jira {"issues": [...]}
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("results", "issues"):
            if isinstance(data.get(key), list):
                return data[key]
    return [data]


def normalize(
    data: Any,
    mapping: Optional[Iterable[FieldMapping]] = None,
    data_path: Optional[str] = None,
    aggregations: Optional[AggregationConfig] = None,
) -> Any:
    """提取 -> 映射 -> 聚合。单个对象按一条记录映射。"""
    selected = extract_records(data, data_path)
    table = _mapping_table(mapping or [])

    if aggregations is not None:
        if isinstance(selected, dict) and "aggregated_data" in selected:
            return selected
        records = [map_record(r, table) for r in _detect_records(selected)]
        return apply_aggregations(records, aggregations)

    if isinstance(selected, list):
        return [map_record(r, table) for r in selected]
    return map_record(selected, table)


def record_count(data: Any) -> int:
    if isinstance(data, dict) and "processed_records" in data:
        return data["processed_records"]
    if isinstance(data, list):
        return len(data)
    return 0 if data is None else 1

"""
查询方言：每个连接器声明一种 QueryType，执行前校验语法，另提供非阻塞的 lint 建议。
"""

import json
import re
from enum import Enum
from typing import Callable, Dict, List

from pydantic import BaseModel, Field

from hub.errors import InputError


class QueryType(str, Enum):
    REST = "rest"
    JQL = "jql"
    SPL = "spl"
    AQL = "aql"
    ELASTIC_DSL = "elastic_dsl"
    PROMQL = "promql"
    GENERIC_JSON = "generic_json"


class LintResult(BaseModel):
    is_valid: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


# ── 校验 ──────────────────────────────────────────────

_JQL_DANGLING = re.compile(
    r"(?:!=|!~|<=|>=|[=<>~]|\b(?:AND|OR|NOT|IN|IS|WAS)\b)\s*$",
    re.IGNORECASE,
)


def _require_text(query: str) -> str:
    text = (query or "").strip()
    if not text:
        raise InputError("Query must not be empty")
    return text


def _validate_jql(query: str):
    text = _require_text(query)
    if _JQL_DANGLING.search(text):
        raise InputError("Invalid JQL syntax: query ends with an operator or keyword")
    if text.count('"') % 2 or text.count("'") % 2:
        raise InputError("Invalid JQL syntax: unmatched quotes")


def _validate_generic_json(query: str):
    text = _require_text(query)
    try:
        descriptor = json.loads(text)
    except ValueError as e:
        raise InputError(f"Generic API query must be a JSON object: {e}")
    if not isinstance(descriptor, dict):
        raise InputError("Generic API query must be a JSON object")
    if not descriptor.get("endpoint"):
        raise InputError("Generic API query requires an 'endpoint'")


def _validate_elastic(query: str):
    text = _require_text(query)
    if text.startswith("{"):
        try:
            json.loads(text)
        except ValueError as e:
            raise InputError(f"Invalid Elasticsearch query DSL: {e}")


def _validate_text(query: str):
    _require_text(query)


_VALIDATORS: Dict[QueryType, Callable[[str], None]] = {
    QueryType.REST: _validate_text,
    QueryType.JQL: _validate_jql,
    QueryType.SPL: _validate_text,
    QueryType.AQL: _validate_text,
    QueryType.ELASTIC_DSL: _validate_elastic,
    QueryType.PROMQL: _validate_text,
    QueryType.GENERIC_JSON: _validate_generic_json,
}


# ── Lint ──────────────────────────────────────────────

def _lint_jql(query: str, result: LintResult):
    lowered = query.lower()
    if "project" not in lowered and "assignee" not in lowered:
        result.warnings.append("Consider adding project or assignee filters for better performance")
    if len(query) > 500:
        result.warnings.append("Very long JQL query - consider breaking it down")


def _lint_spl(query: str, result: LintResult):
    if "index=" not in query:
        result.warnings.append("Consider specifying an index for better performance")
    if "earliest=" not in query:
        result.suggestions.append("Add time range with earliest= for faster results")


def _lint_aql(query: str, result: LintResult):
    upper = query.upper()
    if not re.search(r"\b(LAST|START)\b", upper):
        result.suggestions.append("Add a time window (LAST n MINUTES or START/STOP) to bound the search")


def _lint_none(query: str, result: LintResult):
    pass


_LINTERS: Dict[QueryType, Callable[[str, LintResult], None]] = {
    QueryType.REST: _lint_none,
    QueryType.JQL: _lint_jql,
    QueryType.SPL: _lint_spl,
    QueryType.AQL: _lint_aql,
    QueryType.ELASTIC_DSL: _lint_none,
    QueryType.PROMQL: _lint_none,
    QueryType.GENERIC_JSON: _lint_none,
}

for _table in (_VALIDATORS, _LINTERS):
    _missing = set(QueryType) - set(_table)
    if _missing:
        raise RuntimeError(f"QueryType 处理函数缺失: {sorted(t.value for t in _missing)}")


def validate_query(query_type: QueryType, query: str):
    """语法错误抛出 InputError，必须在任何网络调用之前执行。"""
    _VALIDATORS[query_type](query)


def lint_query(query_type: QueryType, query: str) -> LintResult:
    result = LintResult()
    try:
        validate_query(query_type, query)
    except InputError as e:
        result.is_valid = False
        result.errors.append(e.message)
        return result
    _LINTERS[query_type](query, result)
    return result

"""
查询网关：所有查询 (API 调用、控件刷新、连接测试) 的统一入口。

校验输入 -> 解析连接器 -> 解析实例 -> 检查启用 -> 限流 -> 执行 -> 分类 -> 字段映射。
连接器错误不会以异常形式抛出，而是作为失败的 QueryResult 返回。
"""

import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, ValidationError

from hub.aggregations import AggregationConfig
from hub.config_loader import HubSettings
from hub.errors import ConnectorError, ErrorKind, InputError, RateLimitExceeded
from hub.mapping import FieldMapping, normalize, record_count
from hub.rate_limit import RateLimiter
from hub.registry import Registry

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}|\{(\w+)\}")


class QueryError(BaseModel):
    kind: ErrorKind
    message: str
    status_code: Optional[int] = None
    excerpt: str = ""


class QueryMetadata(BaseModel):
    execution_time_ms: float = 0.0
    system_name: str = ""
    instance_id: str = ""
    method: Optional[str] = None
    record_count: int = 0
    timestamp: str = ""


class QueryResult(BaseModel):
    success: bool
    data: Any = None
    error: Optional[QueryError] = None
    metadata: QueryMetadata = Field(default_factory=QueryMetadata)


def render_query(query: str, params: Optional[Dict[str, Any]] = None) -> str:
    """替换 {{name}} / {name} 占位符；未提供的参数保持原样。"""
    if not params:
        return query

    def replacer(m: re.Match) -> str:
        name = m.group(1) or m.group(2)
        if name in params and params[name] is not None:
            return str(params[name])
        return m.group(0)

    return _PLACEHOLDER.sub(replacer, query)


def _error_from(exc: ConnectorError) -> QueryError:
    return QueryError(
        kind=exc.kind,
        message=exc.message,
        status_code=getattr(exc, "status_code", None),
        excerpt=getattr(exc, "excerpt", "") or "",
    )


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class QueryGateway:
    def __init__(self, registry: Registry, settings: Optional[HubSettings] = None, rate_limiter: Optional[RateLimiter] = None):
        self.registry = registry
        self.settings = settings or HubSettings()
        self._rate_limiter = rate_limiter or RateLimiter()
        # "system/instance" -> 最近一次同步结果
        self._last_sync: Dict[str, Dict[str, Any]] = {}

    # ── 执行 ──────────────────────────────────────────

    async def run(
        self,
        system_name: str,
        instance_id: str,
        query: str,
        method: Optional[str] = None,
        opts: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        mapping: Optional[Iterable[FieldMapping | dict]] = None,
        data_path: Optional[str] = None,
        aggregations: Optional[AggregationConfig | dict] = None,
    ) -> QueryResult:
        started = time.perf_counter()
        metadata = QueryMetadata(system_name=system_name or "", instance_id=instance_id or "", method=method)
        key = f"{(system_name or '').lower()}/{instance_id}"

        try:
            # VALIDATE_INPUT
            if not system_name or not instance_id:
                raise InputError("system_name and instance_id are required")
            if not query or not str(query).strip():
                raise InputError("query is required")
            try:
                field_mapping = [
                    m if isinstance(m, FieldMapping) else FieldMapping.model_validate(m) for m in (mapping or [])
                ]
                aggregation_config = (
                    AggregationConfig.model_validate(aggregations)
                    if aggregations is not None and not isinstance(aggregations, AggregationConfig)
                    else aggregations
                )
            except ValidationError as e:
                raise InputError(f"Invalid mapping or aggregations: {e}")
            rendered = render_query(str(query), params)

            # RESOLVE_CONNECTOR / RESOLVE_INSTANCE / CHECK_ACTIVE
            connector = self.registry.get(system_name)
            instance = connector.resolve_instance(instance_id)

            # CHECK_RATE
            if self.settings.enforce_rate_limits and not self._rate_limiter.try_acquire(
                connector.system_name, instance.id, instance.rate_limit
            ):
                raise RateLimitExceeded(connector.system_name, instance.id, instance.rate_limit.requests_per_minute)

            # EXECUTE / CLASSIFY
            raw = await connector.execute_query(rendered, method, instance.id, opts)

            # MAP_FIELDS
            data = normalize(raw, field_mapping, data_path, aggregation_config)
        except ConnectorError as e:
            metadata.execution_time_ms = round((time.perf_counter() - started) * 1000, 2)
            metadata.timestamp = _now_iso()
            logger.warning(f"[{key}] 查询失败 ({e.kind.value}): {e.message}")
            self._record_sync(key, False, e.kind.value, e.message, metadata.timestamp)
            return QueryResult(success=False, error=_error_from(e), metadata=metadata)
        except Exception as e:
            metadata.execution_time_ms = round((time.perf_counter() - started) * 1000, 2)
            metadata.timestamp = _now_iso()
            logger.error(f"[{key}] 查询出现未预期的错误: {e}", exc_info=True)
            self._record_sync(key, False, ErrorKind.INTERNAL_ERROR.value, str(e), metadata.timestamp)
            return QueryResult(
                success=False,
                error=QueryError(kind=ErrorKind.INTERNAL_ERROR, message=f"{type(e).__name__}: {e}"),
                metadata=metadata,
            )

        metadata.execution_time_ms = round((time.perf_counter() - started) * 1000, 2)
        metadata.timestamp = _now_iso()
        metadata.record_count = record_count(data)
        logger.info(f"[{key}] 查询成功: {metadata.record_count} 条记录, {metadata.execution_time_ms} ms")
        self._record_sync(key, True, None, None, metadata.timestamp)
        return QueryResult(success=True, data=data, metadata=metadata)

    # ── 连接测试 ──────────────────────────────────────

    async def test_connection(self, system_name: str, instance_id: str) -> QueryResult:
        """用连接器的健康查询测试实例连通性。"""
        connector = self.registry.find(system_name)
        health = connector.health_query() if connector else None
        if connector is not None and health is None:
            return QueryResult(
                success=False,
                error=QueryError(kind=ErrorKind.INPUT_ERROR,
                                 message=f"{connector.system_name} has no health check query"),
                metadata=QueryMetadata(system_name=system_name, instance_id=instance_id),
            )
        query, method = health or ("__health_check__", "GET")
        return await self.run(system_name, instance_id, query, method)

    async def health_all(self) -> Dict[str, Any]:
        """测试所有已启用实例；未启用的实例只计数，不发请求。"""
        results: List[Dict[str, Any]] = []
        for system_name, instance in self.registry.all_instances():
            entry: Dict[str, Any] = {
                "system_name": system_name,
                "instance_id": instance.id,
                "display_name": instance.display_name,
                "is_active": instance.is_active,
            }
            if not instance.is_active:
                entry["status"] = "disabled"
            else:
                result = await self.test_connection(system_name, instance.id)
                entry["status"] = "healthy" if result.success else "unhealthy"
                entry["response_time_ms"] = result.metadata.execution_time_ms
                if result.error:
                    entry["error"] = result.error.model_dump(mode="json")
            results.append(entry)

        return {
            "summary": {
                "total": len(results),
                "healthy": sum(1 for r in results if r["status"] == "healthy"),
                "unhealthy": sum(1 for r in results if r["status"] == "unhealthy"),
                "disabled": sum(1 for r in results if r["status"] == "disabled"),
            },
            "instances": results,
            "timestamp": _now_iso(),
        }

    # ── 同步状态 ──────────────────────────────────────

    def _record_sync(self, key: str, success: bool, kind: Optional[str], message: Optional[str], timestamp: str):
        self._last_sync[key] = {
            "status": "success" if success else "error",
            "error_kind": kind,
            "message": message,
            "timestamp": timestamp,
        }

    def last_sync(self, system_name: str, instance_id: str) -> Optional[Dict[str, Any]]:
        return self._last_sync.get(f"{system_name.lower()}/{instance_id}")

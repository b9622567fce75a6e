"""
FastAPI 路由：暴露连接器、实例、查询与控件接口。
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from hub.connectors.base import Connector
from hub.errors import HTTP_STATUS_BY_KIND, ConnectorError
from hub.gateway import QueryResult, render_query
from hub.mapping import FieldMapping
from hub.models import Widget
from hub.query_lang import lint_query

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# 这些全局引用会在 main.py 中注入
_registry = None
_gateway = None
_pipeline = None
_resource_manager = None


def init_api(registry, gateway, pipeline, resource_manager):
    """注入全局依赖（由 main.py 调用）。"""
    global _registry, _gateway, _pipeline, _resource_manager
    _registry = registry
    _gateway = gateway
    _pipeline = pipeline
    _resource_manager = resource_manager


# ── 请求体 ────────────────────────────────────────────

class PluginQueryRequest(BaseModel):
    query: str
    method: Optional[str] = None
    opts: Dict[str, Any] = Field(default_factory=dict)
    params: Dict[str, Any] = Field(default_factory=dict)


class ValidateQueryRequest(BaseModel):
    query: str = ""
    method: str = "GET"


class QueryRequest(BaseModel):
    system_name: str = ""
    system_id: str = ""
    query: Optional[str] = None
    endpoint: Optional[str] = None
    method: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)
    opts: Dict[str, Any] = Field(default_factory=dict)
    mapping: List[FieldMapping] = Field(default_factory=list)
    data_path: Optional[str] = None


# 允许通过管理接口修改的实例字段
_EDITABLE_INSTANCE_FIELDS = {"display_name", "base_url", "is_active", "auth", "auth_type", "auth_config", "ssl", "rate_limit", "tags"}


# ── 工具函数 ──────────────────────────────────────────

def _get_connector(name: str) -> Connector:
    connector = _registry.find(name)
    if connector is None:
        raise HTTPException(404, f"连接器 '{name}' 不存在")
    return connector


def _check_instance(connector: Connector, instance_id: str):
    if connector.get_instance(instance_id) is None:
        raise HTTPException(404, f"{connector.system_name} 实例 '{instance_id}' 不存在")


def _result_response(result: QueryResult) -> Any:
    """成功返回 200；失败按错误类型返回对应状态码与结构化错误。"""
    body = result.model_dump(mode="json")
    if result.success:
        return body
    return JSONResponse(status_code=HTTP_STATUS_BY_KIND[result.error.kind], content=body)


def _get_widget(widget_id: str) -> Widget:
    widget = _resource_manager.get_widget(widget_id)
    if widget is None:
        raise HTTPException(404, f"控件 '{widget_id}' 不存在")
    return widget


# ── 连接器 ────────────────────────────────────────────

@router.get("/plugins")
async def list_plugins() -> list[dict]:
    """列出所有已注册的连接器及其实例摘要。"""
    result = []
    for connector in _registry.list_connectors():
        summary = connector.describe()
        summary["instances"] = [i.summary() for i in connector.get_instances()]
        result.append(summary)
    return result


@router.get("/plugins/available")
async def list_available_plugins() -> list[dict]:
    """只列出至少有一个启用实例的连接器。"""
    return [
        connector.describe()
        for connector in _registry.list_connectors()
        if any(i.is_active for i in connector.get_instances())
    ]


@router.get("/plugins/instances")
async def list_all_instances() -> list[dict]:
    result = []
    for system_name, instance in _registry.all_instances():
        summary = instance.summary()
        summary["last_sync"] = _gateway.last_sync(system_name, instance.id)
        result.append(summary)
    return result


@router.get("/plugins/health")
async def plugins_health() -> dict[str, Any]:
    """对所有启用的实例执行健康检查。"""
    return await _gateway.health_all()


@router.get("/plugins/{name}/instances")
async def list_plugin_instances(name: str) -> list[dict]:
    connector = _get_connector(name)
    return [i.summary() for i in connector.get_instances()]


@router.get("/plugins/{name}/queries")
async def list_default_queries(name: str) -> dict[str, Any]:
    connector = _get_connector(name)
    return {
        "system_name": connector.system_name,
        "query_type": connector.query_type.value,
        "queries": [q.model_dump(mode="json") for q in connector.default_queries],
    }


@router.post("/plugins/{name}/instances/{instance_id}/query")
async def execute_plugin_query(name: str, instance_id: str, req: PluginQueryRequest):
    connector = _get_connector(name)
    _check_instance(connector, instance_id)
    result = await _gateway.run(connector.system_name, instance_id, req.query, req.method,
                                opts=req.opts, params=req.params)
    return _result_response(result)


@router.post("/plugins/{name}/instances/{instance_id}/default-query/{query_id}")
async def execute_default_query(name: str, instance_id: str, query_id: str, params: Optional[Dict[str, Any]] = None):
    """执行目录中的预置查询；params 用于替换路径中的 {placeholder}。"""
    connector = _get_connector(name)
    _check_instance(connector, instance_id)
    query_def = connector.get_default_query(query_id)
    if query_def is None:
        raise HTTPException(404, f"预置查询 '{query_id}' 不存在")
    result = await _gateway.run(connector.system_name, instance_id, query_def.path,
                                query_def.method.value, params=params or {})
    return _result_response(result)


@router.post("/plugins/{name}/instances/{instance_id}/validate-query")
async def validate_plugin_query(name: str, instance_id: str, req: ValidateQueryRequest) -> dict[str, Any]:
    if not req.query:
        raise HTTPException(400, "Query is required")
    connector = _get_connector(name)
    _check_instance(connector, instance_id)
    lint = lint_query(connector.query_type, req.query)
    return {
        "query": req.query,
        "method": req.method,
        "validation": lint.model_dump(),
        "plugin_name": connector.system_name,
        "instance_id": instance_id,
    }


@router.post("/plugins/{name}/instances/{instance_id}/test-connection")
async def run_connection_test(name: str, instance_id: str) -> dict[str, Any]:
    connector = _get_connector(name)
    _check_instance(connector, instance_id)
    result = await _gateway.test_connection(connector.system_name, instance_id)
    return {
        "success": result.success,
        "status": "connected" if result.success else "failed",
        "response_time_ms": result.metadata.execution_time_ms,
        "data": result.data if result.success else None,
        "error": result.error.model_dump(mode="json") if result.error else None,
    }


# ── 实例管理 ──────────────────────────────────────────

def _update_instance(connector: Connector, instance_id: str, changes: Dict[str, Any]) -> dict:
    try:
        updated = connector.update_instance(instance_id, changes)
    except ValidationError as e:
        raise HTTPException(400, f"实例配置无效: {e}")
    except ConnectorError as e:
        raise HTTPException(e.http_status, e.message)
    _resource_manager.save_instance_override(connector.system_name, instance_id, changes)
    return updated.summary()


@router.put("/instances/{name}/{instance_id}")
async def update_instance(name: str, instance_id: str, changes: Dict[str, Any]) -> dict:
    """管理员修改实例配置，并持久化为覆盖项。"""
    connector = _get_connector(name)
    _check_instance(connector, instance_id)
    unknown = set(changes) - _EDITABLE_INSTANCE_FIELDS
    if unknown:
        raise HTTPException(400, f"不可修改的字段: {sorted(unknown)}")
    return _update_instance(connector, instance_id, changes)


@router.post("/instances/{name}/{instance_id}/toggle")
async def toggle_instance(name: str, instance_id: str) -> dict:
    connector = _get_connector(name)
    _check_instance(connector, instance_id)
    current = connector.get_instance(instance_id)
    return _update_instance(connector, instance_id, {"is_active": not current.is_active})


# ── 通用查询 ──────────────────────────────────────────

@router.post("/query")
async def execute_query(req: QueryRequest):
    """按 system_name + system_id 执行查询，返回 {success, data|error, metadata}。"""
    query = req.query if req.query is not None else req.endpoint
    result = await _gateway.run(
        req.system_name,
        req.system_id,
        query or "",
        req.method,
        opts=req.opts,
        params=req.params,
        mapping=req.mapping,
        data_path=req.data_path,
    )
    return _result_response(result)


@router.post("/query/render")
async def preview_query(body: Dict[str, Any]) -> dict:
    """预览参数替换后的查询文本。"""
    return {"query": render_query(str(body.get("query", "")), body.get("params") or {})}


# ── 控件 ──────────────────────────────────────────────

@router.get("/widgets")
async def list_widgets() -> list[Widget]:
    return _resource_manager.load_widgets()


@router.post("/widgets")
async def create_widget(widget: Widget) -> Widget:
    """创建控件并立即调度。"""
    if _resource_manager.get_widget(widget.id) is not None:
        raise HTTPException(409, f"控件 '{widget.id}' 已存在")
    saved = _resource_manager.save_widget(widget)
    _pipeline.sync_widget(saved)
    return saved


@router.get("/widgets/data")
async def get_all_widget_data() -> dict[str, Any]:
    return {wid: state.model_dump(mode="json") for wid, state in _pipeline.all_data().items()}


@router.get("/widgets/{widget_id}")
async def get_widget(widget_id: str) -> Widget:
    return _get_widget(widget_id)


@router.put("/widgets/{widget_id}")
async def update_widget(widget_id: str, widget: Widget) -> Widget:
    if widget.id != widget_id:
        raise HTTPException(400, "ID mismatch")
    _get_widget(widget_id)
    saved = _resource_manager.save_widget(widget)
    _pipeline.sync_widget(saved)
    return saved


@router.delete("/widgets/{widget_id}")
async def delete_widget(widget_id: str) -> dict:
    if not _resource_manager.delete_widget(widget_id):
        raise HTTPException(404, f"控件 '{widget_id}' 不存在")
    _pipeline.remove_widget(widget_id)
    return {"message": f"Widget {widget_id} deleted"}


@router.get("/widgets/{widget_id}/data")
async def get_widget_data(widget_id: str) -> dict[str, Any]:
    _get_widget(widget_id)
    state = _pipeline.get_data(widget_id)
    if state is None:
        return {"widget_id": widget_id, "status": None, "data": None, "message": "暂无数据"}
    return state.model_dump(mode="json")


@router.post("/widgets/{widget_id}/refresh")
async def refresh_widget(widget_id: str, wait: bool = True) -> dict[str, Any]:
    """手动刷新控件；wait=false 时后台执行并立即返回。"""
    _get_widget(widget_id)
    if _pipeline.get_widget(widget_id) is None:
        raise HTTPException(409, f"控件 '{widget_id}' 未加载到刷新管道")
    if not wait:
        _pipeline.trigger(widget_id)
        return {"message": f"已触发刷新: {widget_id}", "widget_id": widget_id}
    state = await _pipeline.refresh(widget_id)
    if state is None:
        raise HTTPException(409, f"控件 '{widget_id}' 的刷新已被取消")
    return state.model_dump(mode="json")

"""
连接器基类：负责实例查找、状态检查、查询校验与 HTTP 请求。

子类只需声明 system_name / query_type / default_queries，并实现 _execute()。
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import httpx

from hub.auth.headers import TransportOptions, build_headers, build_transport_options
from hub.config_loader import AuthType, QueryDef, SystemInstance, env_instance, merge_instance
from hub.errors import InputError, InstanceInactive, InstanceNotFound
from hub.query_lang import QueryType, validate_query
from hub.transport import classify_response, join_url, send

logger = logging.getLogger(__name__)

HEALTH_CHECK = "__health_check__"


def int_option(opts: Dict[str, Any], name: str, default: Optional[int] = None) -> Optional[int]:
    """读取整数选项；无法转换时是调用方的输入错误。"""
    value = opts.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InputError(f"Option '{name}' must be an integer, got {value!r}")


class Connector:
    """
    一个外部系统家族 (Jira、Splunk、QRadar ...) 的查询实现。
    实例表属于连接器自身；除 is_active 与管理员修改外不会变化。
    """

    system_name: str = ""
    display_name: str = ""
    query_type: QueryType = QueryType.REST
    default_queries: Tuple[QueryDef, ...] = ()

    # 环境变量默认实例
    env_prefix: Optional[str] = None
    fallback_url: str = ""
    default_auth_type: AuthType = AuthType.NONE
    default_api_key_header: str = "Authorization"

    # __health_check__ 对应的轻量探测接口，None 表示不支持
    probe_path: Optional[str] = None

    def __init__(
        self,
        instances: Iterable[SystemInstance] = (),
        transport: Optional[httpx.AsyncBaseTransport] = None,
        default_timeout_ms: Optional[int] = None,
    ):
        self._instances: Dict[str, SystemInstance] = {}
        for instance in instances:
            if instance.system_name.lower() != self.system_name.lower():
                raise ValueError(
                    f"Instance '{instance.id}' belongs to '{instance.system_name}', not '{self.system_name}'"
                )
            self._instances[instance.id] = instance
        self._transport = transport
        self._default_timeout_ms = default_timeout_ms

    @classmethod
    def default_instances(cls, environ: Mapping[str, str] | None = None) -> List[SystemInstance]:
        """由 {PREFIX}_* 环境变量构建的默认实例；未声明 env_prefix 的连接器没有默认实例。"""
        if not cls.env_prefix:
            return []
        return [
            env_instance(
                cls.system_name,
                cls.env_prefix,
                f"{cls.system_name}-main",
                cls.display_name or cls.system_name,
                cls.fallback_url,
                default_auth_type=cls.default_auth_type,
                environ=environ,
            )
        ]

    @property
    def enabled_env_var(self) -> Optional[str]:
        return f"{self.env_prefix}_ENABLED" if self.env_prefix else None

    @property
    def supports_probe(self) -> bool:
        return self.probe_path is not None

    # ── 实例 ──────────────────────────────────────────

    def get_instances(self) -> List[SystemInstance]:
        return list(self._instances.values())

    def get_instance(self, instance_id: str) -> Optional[SystemInstance]:
        return self._instances.get(instance_id)

    def update_instance(self, instance_id: str, changes: Dict[str, Any]) -> SystemInstance:
        """替换实例 (不可变模型)，返回新的实例。"""
        current = self._instances.get(instance_id)
        if current is None:
            raise InstanceNotFound(self.system_name, instance_id)
        updated = merge_instance(current, changes)
        self._instances[instance_id] = updated
        logger.info(f"[{updated.key}] 实例配置已更新 (is_active={updated.is_active})")
        return updated

    def set_active(self, instance_id: str, is_active: bool) -> SystemInstance:
        return self.update_instance(instance_id, {"is_active": is_active})

    def resolve_instance(self, instance_id: str) -> SystemInstance:
        instance = self._instances.get(instance_id)
        if instance is None:
            raise InstanceNotFound(self.system_name, instance_id)
        if not instance.is_active:
            raise InstanceInactive(self.system_name, instance_id, self.enabled_env_var)
        return instance

    # ── 查询 ──────────────────────────────────────────

    async def execute_query(
        self,
        query: str,
        method: Optional[str],
        instance_id: str,
        opts: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        对指定实例执行查询。

        实例不存在 / 未启用 / 语法错误都在网络调用之前抛出。
        """
        instance = self.resolve_instance(instance_id)
        opts = opts or {}
        text = (query or "").strip()
        if text == HEALTH_CHECK:
            return await self.probe(instance)
        validate_query(self.query_type, text)
        return await self._execute(instance, text, (method or "GET").upper(), opts)

    async def _execute(self, instance: SystemInstance, query: str, method: str, opts: Dict[str, Any]) -> Any:
        raise NotImplementedError

    async def probe(self, instance: SystemInstance) -> Any:
        if self.probe_path is None:
            raise InputError(f"{self.system_name} does not support the {HEALTH_CHECK} probe")
        return await self.request(instance, "GET", self.probe_path)

    def health_query(self) -> Optional[Tuple[str, str]]:
        """test-connection 使用的查询：优先探测接口，否则取目录中的第一条。"""
        if self.supports_probe:
            return HEALTH_CHECK, "GET"
        if self.default_queries:
            first = self.default_queries[0]
            return first.path, first.method.value
        return None

    def get_default_query(self, query_id: str) -> Optional[QueryDef]:
        for q in self.default_queries:
            if q.id == query_id:
                return q
        return None

    # ── HTTP ──────────────────────────────────────────

    def extra_headers(self, instance: SystemInstance) -> Dict[str, str]:
        """家族特有的请求头 (QRadar Version、vCenter session ...)。"""
        return {}

    def headers_for(self, instance: SystemInstance, headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        merged = {"Accept": "application/json"}
        merged.update(build_headers(instance, self.default_api_key_header))
        merged.update(self.extra_headers(instance))
        if headers:
            merged.update(headers)
        return merged

    def transport_options(self, instance: SystemInstance) -> TransportOptions:
        return build_transport_options(instance, self._default_timeout_ms)

    async def send(
        self,
        instance: SystemInstance,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Any = None,
        data: Any = None,
        content: Optional[str | bytes] = None,
        headers: Optional[Dict[str, str]] = None,
        options: Optional[TransportOptions] = None,
    ) -> httpx.Response:
        url = join_url(instance.base_url, path)
        logger.debug(f"[{instance.key}] {method} {url}")
        return await send(
            method,
            url,
            options or self.transport_options(instance),
            headers=self.headers_for(instance, headers),
            params=params,
            json_body=json_body,
            data=data,
            content=content,
            transport=self._transport,
        )

    async def request(self, instance: SystemInstance, method: str, path: str, **kwargs) -> Any:
        """发送请求并分类响应，返回解析后的数据。"""
        response = await self.send(instance, method, path, **kwargs)
        return classify_response(response)

    def describe(self) -> dict[str, Any]:
        return {
            "system_name": self.system_name,
            "display_name": self.display_name or self.system_name,
            "query_type": self.query_type.value,
            "instance_count": len(self._instances),
            "active_instance_count": sum(1 for i in self._instances.values() if i.is_active),
            "default_query_count": len(self.default_queries),
            "supports_health_check": self.supports_probe,
            "env_prefix": self.env_prefix,
        }

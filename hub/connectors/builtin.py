"""
内置连接器列表与注册表构建。
"""

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Type

import httpx

from hub.config_loader import AppConfig, resolve_instances, merge_instance
from hub.connectors.base import Connector
from hub.connectors.elastic import ElasticConnector
from hub.connectors.generic_api import GenericApiConnector
from hub.connectors.grafana import GrafanaConnector
from hub.connectors.jira import JiraConnector
from hub.connectors.qradar import QRadarConnector
from hub.connectors.rest import (
    CarbonBlackConnector,
    ConfluenceConnector,
    FortiGateConnector,
    PaloAltoConnector,
    SysdigConnector,
    VeeamConnector,
    VMwareConnector,
)
from hub.connectors.splunk import SplunkConnector
from hub.registry import Registry

logger = logging.getLogger(__name__)

BUILTIN_CONNECTORS: List[Type[Connector]] = [
    JiraConnector,
    SplunkConnector,
    QRadarConnector,
    ElasticConnector,
    GrafanaConnector,
    FortiGateConnector,
    PaloAltoConnector,
    VMwareConnector,
    CarbonBlackConnector,
    SysdigConnector,
    VeeamConnector,
    ConfluenceConnector,
    GenericApiConnector,
]


def build_registry(
    config: Optional[AppConfig] = None,
    overrides: Optional[Iterable[dict]] = None,
    connector_classes: Iterable[Type[Connector]] = BUILTIN_CONNECTORS,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    environ: Mapping[str, str] | None = None,
) -> Registry:
    """
    为每个连接器解析实例 (环境默认值 -> YAML 显式配置 -> 持久化的管理员修改)，
    注册后冻结。

    overrides: [{"system_name", "instance_id", "changes": {...}}]
    """
    pending: Dict[tuple, dict] = {}
    for item in overrides or []:
        key = (item["system_name"].lower(), item["instance_id"])
        pending[key] = item.get("changes") or {}

    default_timeout_ms = config.settings.default_timeout_ms if config else None

    registry = Registry()
    for cls in connector_classes:
        instances = resolve_instances(cls.system_name, cls.default_instances(environ), config)
        resolved = []
        for instance in instances:
            changes = pending.pop((cls.system_name.lower(), instance.id), None)
            if changes:
                instance = merge_instance(instance, changes)
                logger.info(f"[{instance.key}] 已应用持久化的实例修改")
            resolved.append(instance)
        registry.register(cls(resolved, transport=transport, default_timeout_ms=default_timeout_ms))

    for system_name, instance_id in pending:
        logger.warning(f"[{system_name}/{instance_id}] 持久化的实例修改没有对应实例，已忽略")

    registry.freeze()
    return registry

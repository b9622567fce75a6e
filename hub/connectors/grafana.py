"""
Grafana：通过 /api/ds/query 代理数据源查询 (PromQL 等)。
"""

from typing import Any, Dict

from hub.config_loader import AuthType, SystemInstance
from hub.connectors.base import Connector
from hub.errors import InputError
from hub.query_lang import QueryType


class GrafanaConnector(Connector):
    system_name = "grafana"
    display_name = "Grafana"
    query_type = QueryType.PROMQL
    env_prefix = "GRAFANA"
    fallback_url = "https://grafana.example.com"
    default_auth_type = AuthType.BEARER
    probe_path = "/api/health"

    query_path = "/api/ds/query"

    async def _execute(self, instance: SystemInstance, query: str, method: str, opts: Dict[str, Any]) -> Any:
        datasource_uid = opts.get("datasource_uid") or opts.get("datasourceUid")
        if not datasource_uid:
            raise InputError("Missing datasource_uid for Grafana query")

        target: Dict[str, Any] = {
            "refId": "A",
            "datasource": {"uid": datasource_uid},
            "expr": query,
        }
        # method 在 Grafana 中表示 instant / range
        if method not in ("GET", "POST"):
            target["queryType"] = method.lower()

        body = {
            "queries": [target],
            "from": opts.get("from", "now-1h"),
            "to": opts.get("to", "now"),
        }
        return await self.request(instance, "POST", self.query_path, json_body=body)

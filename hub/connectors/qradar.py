"""
QRadar：Ariel 搜索是异步的，创建 -> 轮询状态 -> 获取结果。
"""

import asyncio
import logging
from typing import Any, Dict

from hub.config_loader import AuthType, HttpMethod, QueryDef, SystemInstance
from hub.connectors.base import Connector
from hub.errors import MalformedResponse, TransportError, UpstreamApiError
from hub.query_lang import QueryType

logger = logging.getLogger(__name__)


class QRadarConnector(Connector):
    system_name = "qradar"
    display_name = "IBM QRadar"
    query_type = QueryType.AQL
    env_prefix = "QRADAR"
    fallback_url = "https://qradar.example.com"
    default_auth_type = AuthType.API_KEY
    default_api_key_header = "SEC"
    probe_path = "/api/system/about"

    api_version = "12.0"
    searches_path = "/api/ariel/searches"
    poll_interval_seconds = 1.0
    max_poll_attempts = 30

    default_queries = (
        QueryDef(id="topOffenses", method=HttpMethod.GET, path="/api/siem/offenses?filter=status%3DOPEN",
                 description="Open offenses"),
        QueryDef(id="eventsByCategory", method=HttpMethod.POST,
                 path="SELECT CATEGORYNAME(category) AS category, COUNT(*) AS total FROM events "
                      "GROUP BY category ORDER BY total DESC LAST 24 HOURS",
                 description="Event count by category (last 24h)"),
    )

    def extra_headers(self, instance: SystemInstance) -> Dict[str, str]:
        headers = {"Version": self.api_version}
        # bearer 配置时也把 token 放进 SEC header
        token = getattr(instance.auth, "token", None)
        if token:
            headers["SEC"] = token
        return headers

    async def _execute(self, instance: SystemInstance, query: str, method: str, opts: Dict[str, Any]) -> Any:
        # 以 /api/ 开头的是直接 REST 调用 (例如 offenses)
        if query.startswith("/api/"):
            return await self.request(instance, method, query, params=opts.get("params") or None)

        created = await self.request(
            instance, "POST", self.searches_path, params={"query_expression": query}
        )
        search_id = created.get("search_id") if isinstance(created, dict) else None
        if not search_id:
            raise MalformedResponse("QRadar did not return a search_id")

        status_path = f"{self.searches_path}/{search_id}"
        for attempt in range(self.max_poll_attempts):
            await asyncio.sleep(self.poll_interval_seconds)
            status = await self.request(instance, "GET", status_path)
            state = status.get("status") if isinstance(status, dict) else None
            if state == "COMPLETED":
                break
            if state in ("ERROR", "CANCELED"):
                raise UpstreamApiError(f"QRadar search {search_id} ended with status {state}",
                                       status_code=200, payload=status)
            logger.debug(f"[{instance.key}] QRadar search {search_id}: {state} ({attempt + 1}/{self.max_poll_attempts})")
        else:
            raise TransportError(f"QRadar search {search_id} did not complete after {self.max_poll_attempts} polls")

        return await self.request(instance, "GET", f"{status_path}/results")

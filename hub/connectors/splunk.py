"""
Splunk：创建搜索任务 -> 轮询 isDone -> 拉取 JSON 结果。
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from bs4 import BeautifulSoup

from hub.config_loader import AuthType, HttpMethod, QueryDef, SystemInstance
from hub.connectors.base import Connector, int_option
from hub.errors import MalformedResponse, TransportError, UpstreamApiError
from hub.query_lang import QueryType

logger = logging.getLogger(__name__)

_GENERATING_PREFIXES = ("search ", "|")


def _parse_sid(data: Any) -> Optional[str]:
    if isinstance(data, dict):
        return data.get("sid")
    if isinstance(data, str):
        soup = BeautifulSoup(data, "xml")
        sid = soup.find("sid")
        return sid.get_text(strip=True) if sid else None
    return None


def _is_done(data: Any) -> bool:
    if isinstance(data, dict):
        entries = data.get("entry") or []
        content = entries[0].get("content", {}) if entries else {}
        return bool(content.get("isDone"))
    if isinstance(data, str):
        soup = BeautifulSoup(data, "xml")
        key = soup.find(lambda t: t.name in ("key", "s:key") and t.get("name") == "isDone")
        return key is not None and key.get_text(strip=True) in ("1", "true")
    return False


def _is_failed(data: Any) -> bool:
    if isinstance(data, dict):
        entries = data.get("entry") or []
        content = entries[0].get("content", {}) if entries else {}
        return bool(content.get("isFailed")) or content.get("dispatchState") == "FAILED"
    return False


class SplunkConnector(Connector):
    system_name = "splunk"
    display_name = "Splunk"
    query_type = QueryType.SPL
    env_prefix = "SPLUNK"
    fallback_url = "https://splunk.example.com:8089"
    default_auth_type = AuthType.BEARER
    probe_path = "/services/server/info?output_mode=json"

    jobs_path = "/services/search/jobs"
    poll_interval_seconds = 1.0
    max_poll_attempts = 20

    default_queries = (
        QueryDef(id="indexVolume", method=HttpMethod.POST,
                 path="index=_internal source=*license_usage.log type=Usage earliest=-24h | stats sum(b) as bytes by idx",
                 description="License usage by index (last 24h)"),
        QueryDef(id="errorCount", method=HttpMethod.POST,
                 path="index=* log_level=ERROR earliest=-1h | stats count by sourcetype",
                 description="Errors per sourcetype (last hour)"),
    )

    async def _execute(self, instance: SystemInstance, query: str, method: str, opts: Dict[str, Any]) -> Any:
        count = int_option(opts, "count", 0)
        search = query if query.startswith(_GENERATING_PREFIXES) else f"search {query}"
        form = {"search": search, "output_mode": "json"}
        for key in ("earliest_time", "latest_time"):
            if opts.get(key):
                form[key] = opts[key]

        created = await self.request(instance, "POST", self.jobs_path, data=form)
        sid = _parse_sid(created)
        if not sid:
            raise MalformedResponse("Splunk did not return a search job id (sid)")

        status_path = f"{self.jobs_path}/{sid}"
        for attempt in range(self.max_poll_attempts):
            await asyncio.sleep(self.poll_interval_seconds)
            status = await self.request(instance, "GET", status_path, params={"output_mode": "json"})
            if _is_failed(status):
                raise UpstreamApiError(f"Splunk search job {sid} failed", status_code=200, payload=status)
            if _is_done(status):
                break
            logger.debug(f"[{instance.key}] Splunk job {sid} 未完成 ({attempt + 1}/{self.max_poll_attempts})")
        else:
            raise TransportError(
                f"Splunk search job {sid} did not finish after {self.max_poll_attempts} polls"
            )

        return await self.request(
            instance, "GET", f"{status_path}/results", params={"output_mode": "json", "count": count}
        )

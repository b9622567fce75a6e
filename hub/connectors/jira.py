"""
Jira：JQL 查询走 /rest/api/2/search，__health_check__ 走 serverInfo。
"""

from datetime import datetime, timezone
from typing import Any, Dict

from hub.config_loader import AuthType, HttpMethod, QueryDef, RateLimitConfig, SystemInstance
from hub.connectors.base import HEALTH_CHECK, Connector, int_option
from hub.query_lang import QueryType


class JiraConnector(Connector):
    system_name = "jira"
    display_name = "Jira"
    query_type = QueryType.JQL
    env_prefix = "JIRA"
    fallback_url = "https://jira.example.com"
    default_auth_type = AuthType.BASIC
    probe_path = "/rest/api/2/serverInfo"

    search_path = "/rest/api/2/search"
    default_max_results = 50

    default_queries = (
        QueryDef(id="healthCheck", method=HttpMethod.GET, path=HEALTH_CHECK, description="Server health check"),
        QueryDef(id="recentIssues", method=HttpMethod.GET, path="created >= -1w ORDER BY created DESC",
                 description="Issues created in the last week"),
        QueryDef(id="openBugs", method=HttpMethod.GET, path="type = Bug AND resolution = Unresolved",
                 description="Open bug tickets"),
        QueryDef(id="myIssues", method=HttpMethod.GET, path="assignee = currentUser() AND resolution = Unresolved",
                 description="My open issues"),
        QueryDef(id="recentlyUpdated", method=HttpMethod.GET, path="updated >= -3d ORDER BY updated DESC",
                 description="Recently updated issues"),
    )

    @classmethod
    def default_instances(cls, environ=None):
        # Jira 默认配额更高
        return [
            instance.model_copy(update={"rate_limit": RateLimitConfig(requests_per_minute=100, burst_size=20)})
            for instance in super().default_instances(environ)
        ]

    async def probe(self, instance: SystemInstance) -> Any:
        info = await self.request(instance, "GET", self.probe_path)
        info = info if isinstance(info, dict) else {}
        return {
            "status": "healthy",
            "server_info": {
                "version": info.get("version"),
                "title": info.get("serverTitle"),
                "base_url": info.get("baseUrl"),
                "deployment_type": info.get("deploymentType"),
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def _execute(self, instance: SystemInstance, query: str, method: str, opts: Dict[str, Any]) -> Any:
        max_results = int_option(opts, "max_results", self.default_max_results)
        start_at = int_option(opts, "start_at")
        fields = opts.get("fields")
        if isinstance(fields, (list, tuple)):
            fields = ",".join(fields)

        if method == "POST":
            body: Dict[str, Any] = {"jql": query, "maxResults": max_results}
            if fields:
                body["fields"] = fields.split(",")
            if start_at is not None:
                body["startAt"] = start_at
            return await self.request(instance, "POST", self.search_path, json_body=body)

        params: Dict[str, Any] = {"jql": query, "maxResults": max_results}
        if fields:
            params["fields"] = fields
        if start_at is not None:
            params["startAt"] = start_at
        return await self.request(instance, "GET", self.search_path, params=params)

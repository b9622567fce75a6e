"""
Elasticsearch：JSON 文本作为 DSL 原样发送，其余文本包装为 query_string。
"""

import json
from typing import Any, Dict

from hub.config_loader import AuthType, SystemInstance
from hub.connectors.base import Connector, int_option
from hub.query_lang import QueryType


class ElasticConnector(Connector):
    system_name = "elastic"
    display_name = "Elasticsearch"
    query_type = QueryType.ELASTIC_DSL
    env_prefix = "ELASTIC"
    fallback_url = "https://elastic.example.com:9200"
    default_auth_type = AuthType.BASIC
    default_api_key_header = "Authorization"
    probe_path = "/_cluster/health"

    async def _execute(self, instance: SystemInstance, query: str, method: str, opts: Dict[str, Any]) -> Any:
        size = int_option(opts, "size")
        if query.startswith("{"):
            body = json.loads(query)
        else:
            body = {"query": {"query_string": {"query": query}}}
        if size is not None:
            body["size"] = size

        index = opts.get("index")
        path = f"/{index}/_search" if index else "/_search"
        return await self.request(instance, "POST", path, json_body=body)

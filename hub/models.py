"""
Data models for stored dashboard widgets.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from hub.aggregations import AggregationConfig
from hub.mapping import FieldMapping


class WidgetType(str, Enum):
    CHART = "chart"
    TABLE = "table"
    METRIC = "metric"
    STATUS = "status"
    LIST = "list"


class QueryConfig(BaseModel):
    """What a widget queries and how often."""
    query: str = Field(description="Query text in the connector's dialect (path, JQL, SPL ...)")
    method: Optional[str] = Field(default=None, description="HTTP verb or method selector")
    params: Dict[str, Any] = Field(default_factory=dict, description="Values for {{placeholders}} in the query")
    opts: Dict[str, Any] = Field(default_factory=dict, description="Connector-specific options")
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None
    mapping: List[FieldMapping] = Field(default_factory=list)
    data_path: Optional[str] = Field(default=None, description="JSONPath selecting the record array")
    aggregations: Optional[AggregationConfig] = None
    refresh_interval_seconds: float = Field(default=300, ge=0, description="0 disables scheduled refresh")

    def connector_opts(self) -> Dict[str, Any]:
        opts = dict(self.opts)
        if self.headers:
            opts.setdefault("headers", self.headers)
        if self.body is not None:
            opts.setdefault("body", self.body)
        return opts


class Widget(BaseModel):
    """A stored dashboard widget bound to one system instance."""
    id: str
    name: str
    type: WidgetType = WidgetType.TABLE
    system_name: str
    system_id: str = Field(description="Instance id within the system family")
    query_config: QueryConfig
    visual_config: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True

    @property
    def scheduled(self) -> bool:
        return self.is_active and self.query_config.refresh_interval_seconds > 0

"""
控件运行时状态定义。每个控件只保存一份最新快照，原地覆盖，不持久化。
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel

from hub.errors import ErrorKind


class WidgetStatus(str, Enum):
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


class WidgetData(BaseModel):
    """控件的最新快照。"""
    widget_id: str
    status: WidgetStatus = WidgetStatus.LOADING
    data: Any = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    last_updated: float = 0.0

"""
资源管理器：基于 TinyDB 持久化控件定义与实例的管理员修改。
"""

import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from tinydb import Query, TinyDB

from hub.config_loader import hub_root
from hub.models import Widget

logger = logging.getLogger(__name__)


def default_db_path() -> Path:
    return hub_root() / "data" / "hub.json"


class ResourceManager:
    """TinyDB 数据操作封装：widgets 表与 instances (覆盖配置) 表。"""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            db_path = default_db_path()
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

        self.db = TinyDB(str(db_path), indent=2, ensure_ascii=False)
        self.widgets_table = self.db.table("widgets")
        self.instances_table = self.db.table("instances")
        logger.info(f"TinyDB 数据库已打开: {db_path}")

    # ── Widgets ──────────────────────────────────────────

    def load_widgets(self) -> List[Widget]:
        widgets = []
        for doc in self.widgets_table.all():
            try:
                widgets.append(Widget.model_validate(doc))
            except ValueError as e:
                logger.error(f"[{doc.get('id')}] 控件定义无效，已跳过: {e}")
        return widgets

    def get_widget(self, widget_id: str) -> Optional[Widget]:
        W = Query()
        results = self.widgets_table.search(W.id == widget_id)
        return Widget.model_validate(results[0]) if results else None

    def save_widget(self, widget: Widget) -> Widget:
        """Create or update a widget."""
        W = Query()
        self.widgets_table.upsert(widget.model_dump(mode="json"), W.id == widget.id)
        logger.debug(f"[{widget.id}] 控件已保存")
        return widget

    def delete_widget(self, widget_id: str) -> bool:
        W = Query()
        removed = self.widgets_table.remove(W.id == widget_id)
        return len(removed) > 0

    # ── Instance overrides ───────────────────────────────

    def load_instance_overrides(self) -> List[Dict[str, Any]]:
        return [dict(doc) for doc in self.instances_table.all()]

    def save_instance_override(self, system_name: str, instance_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """合并保存管理员对实例的修改 (后写覆盖先写)。"""
        Inst = Query()
        cond = (Inst.system_name == system_name.lower()) & (Inst.instance_id == instance_id)
        existing = self.instances_table.search(cond)
        merged = dict(existing[0].get("changes", {})) if existing else {}
        if "auth" in changes or "auth_type" in changes:
            for key in ("auth", "auth_type", "auth_config"):
                merged.pop(key, None)
        merged.update(changes)
        record = {
            "system_name": system_name.lower(),
            "instance_id": instance_id,
            "changes": merged,
            "updated_at": time.time(),
        }
        self.instances_table.upsert(record, cond)
        logger.debug(f"[{system_name}/{instance_id}] 实例修改已持久化")
        return record

    def close(self):
        """关闭数据库。"""
        self.db.close()

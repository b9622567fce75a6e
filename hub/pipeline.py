"""
控件数据管道：按刷新间隔调度每个控件的查询，维护内存中的 WidgetData 快照。

每个启用的控件一个 ticker 任务；每次刷新是独立的任务，慢查询不会推迟下一次 tick。
刷新结果按启动顺序生效：先启动、后完成的刷新不会覆盖后启动的结果。
"""

import asyncio
import logging
import time
from typing import Dict, Iterable, Optional, Set

from hub.config_loader import HubSettings
from hub.errors import ErrorKind
from hub.gateway import QueryGateway, QueryResult
from hub.models import Widget
from hub.widget_state import WidgetData, WidgetStatus

logger = logging.getLogger(__name__)


class WidgetPipeline:
    """
    负责调度 Widget 刷新并维护 WidgetData。
    所有状态只在事件循环线程中修改。
    """

    def __init__(self, gateway: QueryGateway, settings: Optional[HubSettings] = None):
        self._gateway = gateway
        self.settings = settings or HubSettings()
        self._semaphore = asyncio.Semaphore(self.settings.max_concurrent_refreshes)

        self._widgets: Dict[str, Widget] = {}
        # widget_id -> WidgetData
        self._states: Dict[str, WidgetData] = {}
        # 最近一次完成的快照，取消刷新时用来撤掉 loading 标记
        self._settled: Dict[str, WidgetData] = {}
        self._tickers: Dict[str, asyncio.Task] = {}
        self._inflight: Dict[str, Set[asyncio.Task]] = {}
        # 每个控件的刷新启动序号 / 最近一次生效的序号
        self._started_seq: Dict[str, int] = {}
        self._applied_seq: Dict[str, int] = {}

    # ── 调度 ──────────────────────────────────────────

    def start(self, widgets: Iterable[Widget]):
        """注册所有控件并启动调度 (需在事件循环中调用)。"""
        count = 0
        for widget in widgets:
            self.sync_widget(widget)
            count += 1
        logger.info(f"控件管道已启动: {count} 个控件, {len(self._tickers)} 个定时刷新")

    def sync_widget(self, widget: Widget):
        """新增或更新控件；旧的调度与进行中的刷新会先被取消。"""
        self._unschedule(widget.id)
        self._widgets[widget.id] = widget
        if widget.scheduled:
            interval = widget.query_config.refresh_interval_seconds
            self._tickers[widget.id] = asyncio.create_task(
                self._ticker(widget.id, interval), name=f"widget-ticker:{widget.id}"
            )
            logger.info(f"[{widget.id}] 已调度, 每 {interval}s 刷新")
        elif not widget.is_active:
            logger.info(f"[{widget.id}] 控件已停用, 不再刷新")

    def remove_widget(self, widget_id: str):
        self._unschedule(widget_id)
        self._widgets.pop(widget_id, None)
        self._states.pop(widget_id, None)
        self._settled.pop(widget_id, None)
        self._started_seq.pop(widget_id, None)
        self._applied_seq.pop(widget_id, None)
        logger.info(f"[{widget_id}] 控件已移除")

    def is_scheduled(self, widget_id: str) -> bool:
        task = self._tickers.get(widget_id)
        return task is not None and not task.done()

    def _unschedule(self, widget_id: str):
        """同步取消 ticker 与进行中的刷新；返回后不会再有该控件的新结果写入。"""
        ticker = self._tickers.pop(widget_id, None)
        if ticker is not None:
            ticker.cancel()
        for task in self._inflight.pop(widget_id, set()):
            task.cancel()

    async def _ticker(self, widget_id: str, interval: float):
        while True:
            self._spawn_cycle(widget_id)
            await asyncio.sleep(interval)

    def _spawn_cycle(self, widget_id: str) -> asyncio.Task:
        task = asyncio.create_task(self._cycle(widget_id), name=f"widget-refresh:{widget_id}")
        tasks = self._inflight.setdefault(widget_id, set())
        tasks.add(task)
        task.add_done_callback(tasks.discard)
        return task

    # ── 刷新 ──────────────────────────────────────────

    async def _cycle(self, widget_id: str) -> Optional[WidgetData]:
        widget = self._widgets.get(widget_id)
        if widget is None:
            return None

        seq = self._started_seq.get(widget_id, 0) + 1
        self._started_seq[widget_id] = seq

        previous = self._states.get(widget_id)
        loading = WidgetData(
            widget_id=widget_id,
            status=WidgetStatus.LOADING,
            data=previous.data if previous else None,
            last_updated=previous.last_updated if previous else 0.0,
        )
        self._states[widget_id] = loading

        qc = widget.query_config
        try:
            async with self._semaphore:
                result = await self._gateway.run(
                    widget.system_name,
                    widget.system_id,
                    qc.query,
                    qc.method,
                    opts=qc.connector_opts(),
                    params=qc.params,
                    mapping=qc.mapping,
                    data_path=qc.data_path,
                    aggregations=qc.aggregations,
                )
        except asyncio.CancelledError:
            # 被取消的刷新不留下 loading 标记；控件已移除时不再写回
            if self._states.get(widget_id) is loading:
                settled = self._settled.get(widget_id)
                if settled is None:
                    self._states.pop(widget_id, None)
                else:
                    self._states[widget_id] = settled
            raise
        except Exception as e:
            logger.error(f"[{widget_id}] 刷新出现未预期的错误: {e}", exc_info=True)
            result = None
            failure = (ErrorKind.INTERNAL_ERROR, f"{type(e).__name__}: {e}")
        else:
            failure = None

        if seq < self._applied_seq.get(widget_id, 0):
            logger.debug(f"[{widget_id}] 丢弃过期的刷新结果 (#{seq})")
            return self._states.get(widget_id)

        self._applied_seq[widget_id] = seq
        state = self._build_state(widget_id, previous, result, failure)
        self._states[widget_id] = state
        self._settled[widget_id] = state
        if state.status == WidgetStatus.ERROR:
            logger.warning(f"[{widget_id}] State -> error ({state.error_kind.value}): {state.error}")
        else:
            logger.debug(f"[{widget_id}] State -> success")
        return state

    def _build_state(
        self,
        widget_id: str,
        previous: Optional[WidgetData],
        result: Optional[QueryResult],
        failure: Optional[tuple],
    ) -> WidgetData:
        now = time.time()
        if result is not None and result.success:
            return WidgetData(widget_id=widget_id, status=WidgetStatus.SUCCESS, data=result.data, last_updated=now)

        if result is not None:
            kind, message = result.error.kind, result.error.message
        else:
            kind, message = failure

        stale = previous.data if (previous and self.settings.retain_data_on_error) else None
        return WidgetData(
            widget_id=widget_id,
            status=WidgetStatus.ERROR,
            data=stale,
            error=message,
            error_kind=kind,
            last_updated=now,
        )

    async def refresh(self, widget_id: str) -> Optional[WidgetData]:
        """手动刷新并等待结果；与定时刷新共用同一个快照。"""
        if widget_id not in self._widgets:
            raise KeyError(widget_id)
        task = self._spawn_cycle(widget_id)
        await asyncio.wait({task})
        if task.cancelled():
            return None
        return task.result()

    def trigger(self, widget_id: str):
        """手动刷新，不等待结果。"""
        if widget_id not in self._widgets:
            raise KeyError(widget_id)
        self._spawn_cycle(widget_id)

    # ── 查询 ──────────────────────────────────────────

    def get_widget(self, widget_id: str) -> Optional[Widget]:
        return self._widgets.get(widget_id)

    def get_data(self, widget_id: str) -> Optional[WidgetData]:
        return self._states.get(widget_id)

    def all_data(self) -> Dict[str, WidgetData]:
        return dict(self._states)

    async def shutdown(self):
        tasks = list(self._tickers.values())
        for inflight in self._inflight.values():
            tasks.extend(inflight)
        for widget_id in list(self._tickers) + list(self._inflight):
            self._unschedule(widget_id)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("控件管道已停止")

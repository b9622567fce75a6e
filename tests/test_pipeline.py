import asyncio
from typing import List

import pytest

from fakes import settle
from hub.config_loader import HubSettings
from hub.errors import ErrorKind
from hub.gateway import QueryError, QueryGateway, QueryResult
from hub.models import Widget
from hub.pipeline import WidgetPipeline
from hub.registry import Registry
from hub.widget_state import WidgetStatus


def make_widget(widget_id="w1", interval=0.0, is_active=True, system_name="demo", system_id="demo-1"):
    return Widget(
        id=widget_id,
        name=f"Widget {widget_id}",
        system_name=system_name,
        system_id=system_id,
        query_config={"query": "/health", "refresh_interval_seconds": interval},
        is_active=is_active,
    )


def ok(data) -> QueryResult:
    return QueryResult(success=True, data=data)


def failed(message="boom", kind=ErrorKind.TRANSPORT_ERROR) -> QueryResult:
    return QueryResult(success=False, error=QueryError(kind=kind, message=message))


class CountingGateway:
    """Returns queued results in order (the last one repeats) and counts calls."""

    def __init__(self, *results: QueryResult):
        self.results: List[QueryResult] = list(results) or [ok({"value": 1})]
        self.calls = 0

    async def run(self, system_name, instance_id, query, method=None, **kwargs):
        self.calls += 1
        return self.results.pop(0) if len(self.results) > 1 else self.results[0]


class Pending:
    def __init__(self):
        self.event = asyncio.Event()
        self.result = None

    def complete(self, result: QueryResult):
        self.result = result
        self.event.set()


class ControlledGateway:
    """Each call blocks until the test completes it."""

    def __init__(self):
        self.calls: List[Pending] = []

    async def run(self, system_name, instance_id, query, method=None, **kwargs):
        pending = Pending()
        self.calls.append(pending)
        await pending.event.wait()
        return pending.result


def test_manual_refresh_success():
    async def scenario():
        pipeline = WidgetPipeline(CountingGateway(ok([{"a": 1}])))
        pipeline.sync_widget(make_widget())
        state = await pipeline.refresh("w1")
        assert state.status == WidgetStatus.SUCCESS
        assert state.data == [{"a": 1}]
        assert state.last_updated > 0
        assert pipeline.get_data("w1") is state
        await pipeline.shutdown()

    asyncio.run(scenario())


def test_loading_keeps_previous_data():
    async def scenario():
        gateway = ControlledGateway()
        pipeline = WidgetPipeline(gateway)
        pipeline.sync_widget(make_widget())

        first = asyncio.create_task(pipeline.refresh("w1"))
        await settle()
        gateway.calls[0].complete(ok("old"))
        await first

        second = asyncio.create_task(pipeline.refresh("w1"))
        await settle()
        loading = pipeline.get_data("w1")
        assert loading.status == WidgetStatus.LOADING
        assert loading.data == "old"
        gateway.calls[1].complete(ok("new"))
        assert (await second).data == "new"

    asyncio.run(scenario())


def test_error_replaces_data_by_default():
    async def scenario():
        pipeline = WidgetPipeline(CountingGateway(ok("good"), failed("connection refused")))
        pipeline.sync_widget(make_widget())
        await pipeline.refresh("w1")
        state = await pipeline.refresh("w1")
        assert state.status == WidgetStatus.ERROR
        assert state.error == "connection refused"
        assert state.error_kind == ErrorKind.TRANSPORT_ERROR
        assert state.data is None

    asyncio.run(scenario())


def test_error_can_retain_stale_data():
    async def scenario():
        settings = HubSettings(retain_data_on_error=True)
        pipeline = WidgetPipeline(CountingGateway(ok("good"), failed()), settings)
        pipeline.sync_widget(make_widget())
        await pipeline.refresh("w1")
        state = await pipeline.refresh("w1")
        assert state.status == WidgetStatus.ERROR
        assert state.data == "good"

    asyncio.run(scenario())


def test_out_of_order_completion_does_not_regress():
    async def scenario():
        gateway = ControlledGateway()
        pipeline = WidgetPipeline(gateway)
        pipeline.sync_widget(make_widget())

        cycle_a = asyncio.create_task(pipeline.refresh("w1"))
        await settle()
        cycle_b = asyncio.create_task(pipeline.refresh("w1"))
        await settle()
        assert len(gateway.calls) == 2

        gateway.calls[1].complete(ok("B"))
        await cycle_b
        assert pipeline.get_data("w1").data == "B"

        gateway.calls[0].complete(ok("A"))
        await cycle_a
        state = pipeline.get_data("w1")
        assert state.status == WidgetStatus.SUCCESS
        assert state.data == "B"

    asyncio.run(scenario())


def test_scheduled_refresh_and_deactivation():
    async def scenario():
        gateway = CountingGateway()
        pipeline = WidgetPipeline(gateway)
        widget = make_widget(interval=0.01)
        pipeline.start([widget])
        assert pipeline.is_scheduled("w1")

        await asyncio.sleep(0.05)
        assert gateway.calls >= 2
        assert pipeline.get_data("w1").status == WidgetStatus.SUCCESS

        pipeline.sync_widget(widget.model_copy(update={"is_active": False}))
        assert not pipeline.is_scheduled("w1")
        calls = gateway.calls
        snapshot = pipeline.get_data("w1")

        await asyncio.sleep(0.05)
        assert gateway.calls == calls
        assert pipeline.get_data("w1") is snapshot
        await pipeline.shutdown()

    asyncio.run(scenario())


def test_zero_interval_is_not_scheduled():
    async def scenario():
        gateway = CountingGateway()
        pipeline = WidgetPipeline(gateway)
        pipeline.start([make_widget(interval=0)])
        await asyncio.sleep(0.02)
        assert not pipeline.is_scheduled("w1")
        assert gateway.calls == 0
        assert pipeline.get_widget("w1") is not None

    asyncio.run(scenario())


def test_remove_discards_inflight_result():
    async def scenario():
        gateway = ControlledGateway()
        pipeline = WidgetPipeline(gateway)
        pipeline.sync_widget(make_widget())
        pipeline.trigger("w1")
        await settle()
        assert len(gateway.calls) == 1

        pipeline.remove_widget("w1")
        gateway.calls[0].complete(ok("late"))
        await settle()
        assert pipeline.get_data("w1") is None
        assert pipeline.get_widget("w1") is None

    asyncio.run(scenario())


def test_deactivation_mid_refresh_restores_last_snapshot():
    async def scenario():
        gateway = ControlledGateway()
        pipeline = WidgetPipeline(gateway)
        widget = make_widget()
        pipeline.sync_widget(widget)

        first = asyncio.create_task(pipeline.refresh("w1"))
        await settle()
        gateway.calls[0].complete(ok("old"))
        good = await first

        # 两个重叠的刷新都被取消
        pipeline.trigger("w1")
        pipeline.trigger("w1")
        await settle()
        assert len(gateway.calls) == 3
        assert pipeline.get_data("w1").status == WidgetStatus.LOADING

        pipeline.sync_widget(widget.model_copy(update={"is_active": False}))
        await settle()
        for pending in gateway.calls[1:]:
            pending.complete(ok("late"))
        await asyncio.sleep(0.05)
        assert pipeline.get_data("w1") is good

    asyncio.run(scenario())


def test_deactivation_before_first_result_leaves_no_snapshot():
    async def scenario():
        gateway = ControlledGateway()
        pipeline = WidgetPipeline(gateway)
        widget = make_widget()
        pipeline.sync_widget(widget)
        pipeline.trigger("w1")
        await settle()

        pipeline.sync_widget(widget.model_copy(update={"is_active": False}))
        await settle()
        gateway.calls[0].complete(ok("late"))
        await asyncio.sleep(0.05)
        assert pipeline.get_data("w1") is None

    asyncio.run(scenario())


def test_unknown_widget_refresh_raises():
    async def scenario():
        await WidgetPipeline(CountingGateway()).refresh("missing")

    with pytest.raises(KeyError):
        asyncio.run(scenario())


def test_dangling_instance_reference_becomes_error_state():
    async def scenario():
        registry = Registry()
        registry.freeze()
        pipeline = WidgetPipeline(QueryGateway(registry))
        pipeline.sync_widget(make_widget(system_name="gone"))
        return await pipeline.refresh("w1")

    state = asyncio.run(scenario())
    assert state.status == WidgetStatus.ERROR
    assert state.error_kind == ErrorKind.INPUT_ERROR
    assert "gone" in state.error


def test_unexpected_gateway_exception_is_internal_error():
    class ExplodingGateway:
        async def run(self, *args, **kwargs):
            raise RuntimeError("kaboom")

    async def scenario():
        pipeline = WidgetPipeline(ExplodingGateway())
        pipeline.sync_widget(make_widget())
        return await pipeline.refresh("w1")

    state = asyncio.run(scenario())
    assert state.status == WidgetStatus.ERROR
    assert state.error_kind == ErrorKind.INTERNAL_ERROR
    assert "kaboom" in state.error

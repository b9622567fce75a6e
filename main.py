"""
Connector Hub 主入口：启动 FastAPI 后端服务。
"""

import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hub import api
from hub.config_loader import load_config
from hub.connectors.builtin import build_registry
from hub.gateway import QueryGateway
from hub.pipeline import WidgetPipeline
from hub.resource_manager import ResourceManager

# 日志配置
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan 事件处理：启动时和关闭时的逻辑。"""

    # 启动时：加载存储的控件并开始定时刷新
    pipeline = app.state.pipeline
    resource_manager = app.state.resource_manager

    widgets = resource_manager.load_widgets()
    if widgets:
        logger.info(f"启动时加载 {len(widgets)} 个控件...")
    else:
        logger.info("没有存储的控件，跳过启动刷新")
    pipeline.start(widgets)

    yield  # 应用运行中

    # 关闭时：停止刷新并关闭数据库连接
    logger.info("正在关闭...")
    await pipeline.shutdown()
    resource_manager.close()


def create_app(config_path=None, db_path=None, transport=None) -> FastAPI:
    """创建并配置 FastAPI 应用。"""
    app = FastAPI(
        title="Connector Hub API",
        description="External system connectors and dashboard widget data",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS 中间件
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── 初始化核心组件 ────────────────────────────────────────
    logger.info("正在加载配置...")
    config = load_config(config_path)
    logger.info(f"已加载 {len(config.systems)} 个系统配置")

    # 持久化 (控件定义 + 实例修改)
    resource_manager = ResourceManager(db_path)

    # 连接器注册表 (环境默认值 -> YAML -> 管理员修改)
    registry = build_registry(config, resource_manager.load_instance_overrides(), transport=transport)

    # 查询网关
    gateway = QueryGateway(registry, config.settings)

    # 控件刷新管道
    pipeline = WidgetPipeline(gateway, config.settings)

    # 注入依赖到 API 模块
    api.init_api(
        registry=registry,
        gateway=gateway,
        pipeline=pipeline,
        resource_manager=resource_manager,
    )

    # 注册 API 路由
    app.include_router(api.router)

    # 将组件存到 app.state，供 lifespan 访问
    app.state.config = config
    app.state.registry = registry
    app.state.gateway = gateway
    app.state.pipeline = pipeline
    app.state.resource_manager = resource_manager

    return app


def main():
    """主入口。"""
    port = int(sys.argv[1]) if len(sys.argv) > 1 else 8400

    logger.info(f"🚀 启动 Connector Hub 后端 (port={port})...")

    app = create_app()

    uvicorn.run(
        app,
        host="127.0.0.1",
        port=port,
        log_level="info",
    )


if __name__ == "__main__":
    main()

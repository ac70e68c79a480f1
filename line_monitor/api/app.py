"""
FastAPI 应用配置

配置 CORS、路由注册。
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..config import get_config
from .routers import events, monitor, stations

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """
    创建 FastAPI 应用实例

    配置：
    - CORS 中间件
    - API 路由
    """
    config = get_config()

    app = FastAPI(
        title="Line Monitor",
        description="产线工位分级、瓶颈识别与轮询状态 API",
        version="1.0.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(monitor.router)
    app.include_router(stations.router)
    app.include_router(events.router)

    return app

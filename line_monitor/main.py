"""
主程序入口

启动两个并发任务：
1. 5s 轮询调度循环（后台任务）
2. REST API 服务
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import List

import uvicorn

from .config import get_config
from .errors import ConfigurationError
from .layout import line_id_from_layout_path, load_layout
from .monitor import LineMonitor, get_monitor


def setup_logging():
    """配置日志"""
    config = get_config()

    # 日志格式
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # 获取日志级别
    level = getattr(logging, config.logging.level.upper(), logging.INFO)

    # 配置根日志
    logging.basicConfig(
        level=level,
        format=log_format,
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    # 如果配置了文件日志
    if config.logging.file:
        log_path = Path(config.logging.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(str(log_path), encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(log_format))
        logging.getLogger().addHandler(file_handler)

    # 降低第三方库日志级别
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def startup_stations() -> List[int]:
    """
    启动时需要注册的工位

    布局文件中的工位在前，配置中显式列出的工位在后（去重）。
    """
    config = get_config()
    station_ids: List[int] = []

    if config.line.layout_file:
        for placement in load_layout(config.line.layout_file):
            if placement.station_id not in station_ids:
                station_ids.append(placement.station_id)

    for station_id in config.line.stations:
        if station_id not in station_ids:
            station_ids.append(station_id)

    return station_ids


def startup_line_id() -> int:
    config = get_config()
    if config.line.layout_file:
        try:
            return line_id_from_layout_path(config.line.layout_file)
        except ConfigurationError:
            pass
    return config.line.line_id


async def register_startup_stations(monitor: LineMonitor) -> int:
    """
    注册启动工位（目标值从指标源拉取）

    目标值拉取失败的工位照常注册，由调度器在之后的周期中重试目标值，
    持续失败时进入缺数告警，不影响其他工位。
    """
    logger = logging.getLogger(__name__)
    line_id = startup_line_id()
    registered = 0

    for station_id in startup_stations():
        if await monitor.register_station_from_source(line_id, station_id, defer_targets=True):
            registered += 1

    logger.info(f"Registered {registered} stations on line {line_id}")
    return registered


async def run_api_server():
    """运行 API 服务器"""
    from .api.app import create_app

    config = get_config()
    app = create_app()

    server_config = uvicorn.Config(
        app=app,
        host=config.api.host,
        port=config.api.port,
        log_level="info",
        access_log=False  # 我们用自己的日志
    )
    server = uvicorn.Server(server_config)
    await server.serve()


async def main():
    """主函数：启动所有任务"""
    logger = logging.getLogger(__name__)

    # 设置日志
    setup_logging()
    logger.info("=" * 60)
    logger.info("Line Monitor v1.0.0")
    logger.info("=" * 60)

    # 加载配置
    config = get_config()
    logger.info(f"Config loaded: API={config.api.host}:{config.api.port}")
    logger.info(f"Metrics source: {config.source.base_url}")

    monitor = get_monitor()
    await register_startup_stations(monitor)

    logger.info("Starting concurrent tasks...")

    # 调度循环在后台运行，API 服务退出时一并停止
    monitor.scheduler.start()
    try:
        await run_api_server()
    except asyncio.CancelledError:
        logger.info("Tasks cancelled, shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        raise
    finally:
        await monitor.scheduler.stop()


def cli():
    """命令行入口"""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutdown requested, exiting...")
        sys.exit(0)


if __name__ == "__main__":
    cli()

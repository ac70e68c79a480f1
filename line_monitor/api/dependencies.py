"""
依赖注入模块

- get_line_monitor: 当前产线监控实例
- require_station: 路径中的工位必须已注册，否则 404
- verify_admin_token: 注册/注销/启停等写操作的管理员校验
"""

import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from ..config import ADMIN_TOKEN_PLACEHOLDER, get_config
from ..models import Station
from ..monitor import LineMonitor, get_monitor


async def get_line_monitor() -> LineMonitor:
    return get_monitor()


async def require_station(
    station_id: int,
    monitor: LineMonitor = Depends(get_line_monitor),
) -> Station:
    """按路径参数取已注册工位"""
    if not monitor.registry.is_registered(station_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Station {station_id} not found"
        )
    return monitor.registry.get(station_id)


async def verify_admin_token(x_admin_token: Optional[str] = Header(None)):
    """
    校验 X-Admin-Token

    admin_token 仍为占位值时不校验（开发环境）。
    """
    expected = get_config().api.admin_token
    if expected == ADMIN_TOKEN_PLACEHOLDER:
        return

    if x_admin_token is None or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token"
        )

"""
事件 API

提供最近事件查询（分级变化、瓶颈变更、缺数告警、就绪）。
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ...models import EventResponse
from ...monitor import LineMonitor
from ..dependencies import get_line_monitor

router = APIRouter(prefix="/api/events", tags=["events"])


@router.get("", response_model=List[EventResponse])
async def list_events(
    limit: int = Query(200, ge=1, le=1000, description="返回数量限制"),
    type: Optional[str] = Query(None, description="按事件类型过滤"),
    monitor: LineMonitor = Depends(get_line_monitor)
):
    """
    获取最近事件

    按时间倒序排列。
    """
    return monitor.bus.recent(limit=limit, event_type=type)

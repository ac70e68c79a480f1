"""
监控控制 API

调度状态、强制刷新、监控启停、瓶颈确认与重置。
"""

from fastapi import APIRouter, Depends

from ...models import BottleneckResponse, MonitorStatus
from ...monitor import LineMonitor
from ..dependencies import get_line_monitor, verify_admin_token

router = APIRouter(prefix="/api", tags=["monitor"])


@router.get("/status", response_model=MonitorStatus)
async def get_status(monitor: LineMonitor = Depends(get_line_monitor)):
    """调度状态、在途/缺数工位和瓶颈"""
    return monitor.status()


@router.post("/refresh", dependencies=[Depends(verify_admin_token)])
async def force_refresh(monitor: LineMonitor = Depends(get_line_monitor)):
    """立即为所有不在途的工位发起拉取"""
    dispatched = monitor.force_refresh()
    return {"dispatched": dispatched}


@router.post("/monitoring/enable", response_model=MonitorStatus, dependencies=[Depends(verify_admin_token)])
async def enable_monitoring(monitor: LineMonitor = Depends(get_line_monitor)):
    monitor.enable()
    return monitor.status()


@router.post("/monitoring/disable", response_model=MonitorStatus, dependencies=[Depends(verify_admin_token)])
async def disable_monitoring(monitor: LineMonitor = Depends(get_line_monitor)):
    monitor.disable()
    return monitor.status()


@router.get("/bottleneck", response_model=BottleneckResponse)
async def get_bottleneck(monitor: LineMonitor = Depends(get_line_monitor)):
    return monitor.bottleneck_view()


@router.post("/bottleneck/acknowledge", response_model=BottleneckResponse, dependencies=[Depends(verify_admin_token)])
async def acknowledge_bottleneck(monitor: LineMonitor = Depends(get_line_monitor)):
    """确认瓶颈变更已展示"""
    monitor.acknowledge_bottleneck()
    return monitor.bottleneck_view()


@router.post("/bottleneck/reset", response_model=BottleneckResponse, dependencies=[Depends(verify_admin_token)])
async def reset_bottleneck(monitor: LineMonitor = Depends(get_line_monitor)):
    """
    重置瓶颈跟踪

    前端切换过滤视图时调用，下一次识别只做赋值，不报告变更。
    """
    monitor.reset_bottleneck()
    return monitor.bottleneck_view()

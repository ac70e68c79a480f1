"""
工位管理 API

提供工位注册、注销和分级状态查询。
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from ...errors import ConfigurationError, FetchError
from ...models import Station, StationCreate, StationResponse
from ...monitor import LineMonitor
from ..dependencies import get_line_monitor, require_station, verify_admin_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stations", tags=["stations"])


@router.get("", response_model=List[StationResponse])
async def list_stations(monitor: LineMonitor = Depends(get_line_monitor)):
    """
    获取所有已注册工位

    包含最新指标值、目标值、各指标分级和分组汇总分级。
    """
    return monitor.stations_view()


@router.get("/{station_id}", response_model=StationResponse)
async def get_station(
    station: Station = Depends(require_station),
    monitor: LineMonitor = Depends(get_line_monitor),
):
    """获取单个工位详情"""
    return monitor.station_view(station.station_id)


@router.post("", response_model=StationResponse, dependencies=[Depends(verify_admin_token)])
async def register_station(data: StationCreate, monitor: LineMonitor = Depends(get_line_monitor)):
    """
    注册工位

    请求中未给出目标值时从指标源拉取。重复注册同一工位不做任何事。
    """
    existing = monitor.registry.is_registered(data.station_id)
    if existing and monitor.registry.get(data.station_id).line_id != data.line_id:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Station {data.station_id} already registered on another line"
        )

    if not existing:
        try:
            if data.targets is None:
                await monitor.register_station_from_source(data.line_id, data.station_id)
            else:
                monitor.register_station(data.line_id, data.station_id, data.targets)
        except FetchError as e:
            logger.warning(f"Cannot load targets for station {data.station_id}: {e}")
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"Cannot load targets: {e}"
            )
        except ConfigurationError as e:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=str(e)
            )

    return monitor.station_view(data.station_id)


@router.delete("/{station_id}", dependencies=[Depends(verify_admin_token)])
async def unregister_station(
    station: Station = Depends(require_station),
    monitor: LineMonitor = Depends(get_line_monitor),
):
    """
    注销工位

    同时清理指标存储、瓶颈跟踪和在途拉取。
    """
    monitor.unregister_station(station.station_id)
    return {"message": "Station unregistered", "station_id": station.station_id}

"""
工位注册表

记录当前被监控的工位（与前端面板的挂载/卸载一一对应）。
注销时依次通知监听者，完成存储、瓶颈、调度三处的级联清理。
"""

import logging
from typing import Callable, Dict, List, Set

from .errors import RegistrationError
from .models import Station

logger = logging.getLogger(__name__)

Listener = Callable[[Station], None]


class StationRegistry:
    """已注册工位集合，以 station_id 为键"""

    def __init__(self):
        self._stations: Dict[int, Station] = {}
        self._on_register: List[Listener] = []
        self._on_unregister: List[Listener] = []

    def add_register_listener(self, listener: Listener):
        self._on_register.append(listener)

    def add_unregister_listener(self, listener: Listener):
        self._on_unregister.append(listener)

    def register(self, station: Station) -> bool:
        """
        注册工位

        重复注册同一工位不做任何事。

        Returns:
            是否为新注册

        Raises:
            RegistrationError: 同一 station_id 已属于另一条产线
        """
        existing = self._stations.get(station.station_id)
        if existing is not None:
            if existing != station:
                raise RegistrationError(
                    f"Station {station.station_id} already registered on line {existing.line_id}"
                )
            return False

        self._stations[station.station_id] = station
        logger.info(f"Registered station {station.station_id} (line {station.line_id})")
        for listener in self._on_register:
            listener(station)
        return True

    def unregister(self, station_id: int) -> Station:
        """
        注销工位并触发级联清理

        Raises:
            RegistrationError: 工位未注册
        """
        station = self._stations.pop(station_id, None)
        if station is None:
            raise RegistrationError(f"Station {station_id} is not registered")

        logger.info(f"Unregistered station {station_id} (line {station.line_id})")
        for listener in self._on_unregister:
            listener(station)
        return station

    def get(self, station_id: int) -> Station:
        return self._stations[station_id]

    def is_registered(self, station_id: int) -> bool:
        return station_id in self._stations

    def list_registered(self) -> Set[Station]:
        return set(self._stations.values())

    def station_ids(self) -> List[int]:
        return sorted(self._stations)

    def __len__(self) -> int:
        return len(self._stations)

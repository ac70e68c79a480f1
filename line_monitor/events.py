"""
事件总线

核心只发出事件，不直接操作展示层对象。
订阅者以显式列表保存；某个订阅者出错只记录日志，不影响其他订阅者和调度循环。
"""

import itertools
import logging
from collections import deque
from datetime import datetime
from typing import Callable, Deque, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from .models import EventResponse, MetricGroup, MetricName, SeverityLevel

logger = logging.getLogger(__name__)


class _Event(BaseModel):
    ts: datetime = Field(default_factory=datetime.utcnow)


class SeverityUpdated(_Event):
    type: Literal["severity_updated"] = "severity_updated"
    station_id: int
    metric: MetricName
    level: SeverityLevel


class AggregateSeverityUpdated(_Event):
    type: Literal["aggregate_severity_updated"] = "aggregate_severity_updated"
    station_id: int
    group: MetricGroup
    level: SeverityLevel


class BottleneckChanged(_Event):
    type: Literal["bottleneck_changed"] = "bottleneck_changed"
    from_station_id: int
    to_station_id: int


class StationDataMissing(_Event):
    type: Literal["station_data_missing"] = "station_data_missing"
    station_id: int
    reason: str = "no_data"


class StationDataRecovered(_Event):
    type: Literal["station_data_recovered"] = "station_data_recovered"
    station_id: int


class MonitorReady(_Event):
    type: Literal["ready"] = "ready"
    stations: List[int] = Field(default_factory=list)


Event = Union[
    SeverityUpdated,
    AggregateSeverityUpdated,
    BottleneckChanged,
    StationDataMissing,
    StationDataRecovered,
    MonitorReady,
]

Subscriber = Callable[[Event], None]


class EventBus:
    """同步分发事件，并保留最近的事件历史供 API 查询"""

    def __init__(self, history_size: int = 500):
        self._subscribers: List[Subscriber] = []
        self._history: Deque[EventResponse] = deque(maxlen=history_size)
        self._seq = itertools.count(1)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        添加订阅者

        Returns:
            取消订阅的函数
        """
        self._subscribers.append(callback)

        def _unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def emit(self, event: Event):
        data = event.model_dump(mode="json", exclude={"ts", "type"})
        self._history.append(EventResponse(
            seq=next(self._seq),
            ts=event.ts,
            type=event.type,
            station_id=data.get("station_id"),
            payload=data,
        ))

        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Event subscriber failed on {event.type}: {e}", exc_info=True)

    def recent(self, limit: int = 200, event_type: Optional[str] = None) -> List[EventResponse]:
        """最近事件，按时间倒序"""
        events = [e for e in reversed(self._history) if event_type is None or e.type == event_type]
        return events[:limit]

    def clear_history(self):
        self._history.clear()

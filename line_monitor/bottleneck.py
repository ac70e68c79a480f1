"""
瓶颈识别

根据各工位的分级结果选出当前瓶颈工位，瓶颈变化时发出一次变更事件。

状态：
- stable: 没有待处理的变更
- transitioning: 已检测到变更，等待确认（acknowledge）
"""

import logging
from enum import Enum
from typing import Callable, Dict, Mapping, Optional

from .errors import ConfigurationError
from .events import BottleneckChanged
from .models import MetricGroup, MetricName, StationEvaluation

logger = logging.getLogger(__name__)

BottleneckRule = Callable[[Mapping[int, StationEvaluation]], Optional[int]]


def worst_cycle_severity(evaluations: Mapping[int, StationEvaluation]) -> Optional[int]:
    """节拍组汇总分级最差的工位；同级取 station_id 最小者"""
    candidates = [
        (evaluation.group_severity(MetricGroup.CYCLE_TIMES), station_id)
        for station_id, evaluation in evaluations.items()
        if evaluation.group_severity(MetricGroup.CYCLE_TIMES) is not None
    ]
    if not candidates:
        return None
    worst = max(level for level, _ in candidates)
    return min(station_id for level, station_id in candidates if level == worst)


def lowest_cycle_ratio(evaluations: Mapping[int, StationEvaluation]) -> Optional[int]:
    """总节拍比值最低的工位；同值取 station_id 最小者"""
    candidates = []
    for station_id, evaluation in evaluations.items():
        if MetricName.TOTAL_CYCLE_TIME not in evaluation.severities:
            continue
        # 退化输入没有比值，按最不利处理
        r = evaluation.ratios.get(MetricName.TOTAL_CYCLE_TIME, 0.0)
        candidates.append((r, station_id))
    if not candidates:
        return None
    return min(candidates)[1]


RULES: Dict[str, BottleneckRule] = {
    "worst_cycle_severity": worst_cycle_severity,
    "lowest_cycle_ratio": lowest_cycle_ratio,
}


def get_rule(name: str) -> BottleneckRule:
    try:
        return RULES[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown bottleneck rule '{name}' (available: {', '.join(sorted(RULES))})"
        ) from None


class TrackerState(str, Enum):
    STABLE = "stable"
    TRANSITIONING = "transitioning"


class BottleneckTracker:
    """
    瓶颈跟踪器

    previous_station_id 为 None 表示未设定：下一次识别结果只做赋值，不算变更。
    """

    def __init__(self, rule: str = "worst_cycle_severity"):
        self.rule_name = rule
        self._rule = get_rule(rule)
        self.current_station_id: Optional[int] = None
        self.previous_station_id: Optional[int] = None
        self.state = TrackerState.STABLE
        self._pending: Optional[BottleneckChanged] = None

    @property
    def pending(self) -> Optional[BottleneckChanged]:
        return self._pending

    def update(self, evaluations: Mapping[int, StationEvaluation]) -> Optional[BottleneckChanged]:
        """
        重新识别瓶颈

        Returns:
            瓶颈发生变化且尚未报告过时返回变更事件，否则 None
        """
        current = self._rule(evaluations)
        if current is None:
            return None

        self.current_station_id = current

        if self.previous_station_id is None:
            self.previous_station_id = current
            self._settle()
            logger.info(f"Bottleneck assigned to station {current}")
            return None

        if current == self.previous_station_id:
            # 确认前又变回原工位
            self._settle()
            return None

        if self._pending is not None and self._pending.to_station_id == current:
            return None

        event = BottleneckChanged(
            from_station_id=self.previous_station_id,
            to_station_id=current,
        )
        self._pending = event
        self.state = TrackerState.TRANSITIONING
        logger.info(f"Bottleneck changed: station {event.from_station_id} -> {event.to_station_id}")
        return event

    def acknowledge(self):
        """确认变更已报告（幂等）"""
        if self.state is TrackerState.TRANSITIONING:
            self.previous_station_id = self.current_station_id
        self._settle()

    def reset(self):
        """视图切换时调用：下一次识别只做赋值，不报告变更"""
        self.previous_station_id = None
        self._settle()

    def forget(self, station_id: int):
        """工位注销：不再持有指向它的瓶颈 id"""
        if station_id == self.current_station_id:
            self.current_station_id = None
            self.previous_station_id = None
            self._settle()
            logger.info(f"Bottleneck cleared: station {station_id} unregistered")
        elif station_id == self.previous_station_id:
            # 当前瓶颈保持不变，下一次识别只做赋值
            self.previous_station_id = None
            self._settle()

    def _settle(self):
        self.state = TrackerState.STABLE
        self._pending = None

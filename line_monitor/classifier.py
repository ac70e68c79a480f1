"""
阈值分级

把单个指标值按目标值分为 OK / WARNING / CRITICAL 三级，
并对一个工位的全部指标做一次分级（供汇总和瓶颈识别使用）。
"""

import logging
import math
from typing import Dict, Mapping, Optional

from .aggregator import aggregate_groups
from .config import ThresholdConfig
from .errors import ConfigurationError
from .models import (
    DEFAULT_DIRECTIONS,
    Direction,
    MetricName,
    SeverityLevel,
    StationEvaluation,
)
from .store import MetricSnapshot

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLDS = ThresholdConfig()


def ratio(value: float, target: float, direction: Direction) -> Optional[float]:
    """
    计算有利方向上的比值

    higherIsBetter: value / target
    lowerIsBetter:  target / value
    onTarget:       min(value / target, target / value)

    Returns:
        比值；value 或 target 为 0（或负数）时返回 None，表示退化输入

    Raises:
        ConfigurationError: 输入不是有限数
    """
    if not (math.isfinite(value) and math.isfinite(target)):
        raise ConfigurationError(f"non-finite input: value={value}, target={target}")

    if value <= 0 or target <= 0:
        return None

    direction = Direction(direction)
    if direction is Direction.HIGHER_IS_BETTER:
        return value / target
    if direction is Direction.LOWER_IS_BETTER:
        return target / value
    return min(value / target, target / value)


def classify(
    value: float,
    target: float,
    direction: Direction,
    thresholds: Optional[ThresholdConfig] = None,
) -> SeverityLevel:
    """
    单个指标分级

    r >= ok_ratio 为 OK，warn_ratio <= r < ok_ratio 为 WARNING，其余为 CRITICAL。
    退化输入（value 或 target 为 0）按最不利比值处理，直接返回 CRITICAL。
    """
    return level_for_ratio(ratio(value, target, direction), thresholds)


def level_for_ratio(
    r: Optional[float],
    thresholds: Optional[ThresholdConfig] = None,
) -> SeverityLevel:
    """按阈值把比值映射为分级（None 表示退化输入）"""
    thresholds = thresholds or DEFAULT_THRESHOLDS
    if r is None:
        return SeverityLevel.CRITICAL
    if r >= thresholds.ok_ratio:
        return SeverityLevel.OK
    if r >= thresholds.warn_ratio:
        return SeverityLevel.WARNING
    return SeverityLevel.CRITICAL


def evaluate_station(
    snapshot: MetricSnapshot,
    station_id: int,
    directions: Optional[Mapping[MetricName, Direction]] = None,
    thresholds: Optional[ThresholdConfig] = None,
) -> StationEvaluation:
    """
    对一个工位在快照中的全部指标分级

    没有样本或没有目标值的指标不参与分级（结果中缺席，而不是记为 OK）。
    """
    directions = directions or DEFAULT_DIRECTIONS
    targets = snapshot.targets_for(station_id)

    severities: Dict[MetricName, SeverityLevel] = {}
    ratios: Dict[MetricName, float] = {}

    for metric in MetricName:
        sample = snapshot.latest(station_id, metric)
        target = targets.get(metric)
        if sample is None or target is None:
            continue

        direction = directions.get(metric, DEFAULT_DIRECTIONS[metric])
        try:
            r = ratio(sample.value, target, direction)
        except ConfigurationError as e:
            logger.warning(f"Station {station_id} metric {metric.value} treated as critical: {e}")
            severities[metric] = SeverityLevel.CRITICAL
            continue

        severities[metric] = level_for_ratio(r, thresholds)
        if r is not None:
            ratios[metric] = r

    return StationEvaluation(
        station_id=station_id,
        severities=severities,
        ratios=ratios,
        groups=aggregate_groups(severities),
    )

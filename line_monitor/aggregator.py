"""
分级汇总

最差者胜出：任一 CRITICAL 即 CRITICAL，否则任一 WARNING 即 WARNING，否则 OK。
缺失项（None）不参与投票。
"""

from typing import Dict, Iterable, Mapping, Optional

from .models import METRIC_GROUPS, MetricGroup, MetricName, SeverityLevel


def aggregate(levels: Iterable[Optional[SeverityLevel]]) -> Optional[SeverityLevel]:
    """
    汇总多个分级

    Args:
        levels: 分级序列，可包含 None 占位

    Returns:
        最严重的分级；全部缺失时返回 None
    """
    present = [SeverityLevel(level) for level in levels if level is not None]
    if not present:
        return None
    return max(present)


def aggregate_groups(
    severities: Mapping[MetricName, SeverityLevel]
) -> Dict[MetricGroup, SeverityLevel]:
    """按指标分组汇总（没有任何指标的分组不出现在结果中）"""
    result: Dict[MetricGroup, SeverityLevel] = {}
    for group in MetricGroup:
        level = aggregate(
            level for metric, level in severities.items()
            if METRIC_GROUPS[metric] is group
        )
        if level is not None:
            result[group] = level
    return result

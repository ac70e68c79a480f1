"""
单元测试：阈值分级

测试覆盖：
- 边界值 r = 0.9 / r = 0.7 的归属
- 单调性：比值变好不会让分级变差
- 退化输入（0）返回 CRITICAL，非有限输入报错
- 自定义阈值、onTarget 方向
- 工位级分级：缺失指标不参与
"""

import math
from datetime import datetime

import pytest

from line_monitor import classifier
from line_monitor.classifier import classify, evaluate_station, level_for_ratio, ratio
from line_monitor.config import ThresholdConfig
from line_monitor.errors import ConfigurationError
from line_monitor.models import (
    Direction,
    MetricGroup,
    MetricName,
    MetricSample,
    SeverityLevel,
)
from line_monitor.store import MetricStore

HIGHER = Direction.HIGHER_IS_BETTER
LOWER = Direction.LOWER_IS_BETTER


class TestClassify:
    """单指标分级测试"""

    def test_boundaries_higher_is_better(self):
        """测试：r = 0.9 属于 OK，r = 0.7 属于 WARNING"""
        assert classify(9.0, 10.0, HIGHER) == SeverityLevel.OK
        assert classify(8.99, 10.0, HIGHER) == SeverityLevel.WARNING
        assert classify(7.0, 10.0, HIGHER) == SeverityLevel.WARNING
        assert classify(6.99, 10.0, HIGHER) == SeverityLevel.CRITICAL

    def test_boundaries_lower_is_better(self):
        """测试：lowerIsBetter 使用 target / value"""
        assert classify(10.0, 9.0, LOWER) == SeverityLevel.OK  # 0.9
        assert classify(10.0, 7.0, LOWER) == SeverityLevel.WARNING  # 0.7
        assert classify(10.0, 6.0, LOWER) == SeverityLevel.CRITICAL
        assert classify(5.0, 10.0, LOWER) == SeverityLevel.OK

    def test_above_target_is_ok(self):
        assert classify(120.0, 100.0, HIGHER) == SeverityLevel.OK

    def test_monotonic_in_favorable_direction(self):
        """测试：value 增大（higherIsBetter）时分级单调不升"""
        target = 50.0
        previous = SeverityLevel.CRITICAL
        for step in range(1, 200):
            value = step * 0.5
            level = classify(value, target, HIGHER)
            assert level <= previous
            previous = level

    def test_monotonic_lower_is_better(self):
        """测试：value 减小（lowerIsBetter）时分级单调不升"""
        target = 30.0
        previous = SeverityLevel.CRITICAL
        for step in range(200, 0, -1):
            level = classify(step * 0.5, target, LOWER)
            assert level <= previous
            previous = level

    def test_zero_value_is_critical(self):
        """测试：value = 0 的退化输入"""
        assert classify(0, 5, HIGHER) == SeverityLevel.CRITICAL
        assert classify(0, 5, LOWER) == SeverityLevel.CRITICAL

    def test_zero_target_is_critical(self):
        assert classify(5, 0, HIGHER) == SeverityLevel.CRITICAL
        assert classify(5, 0, LOWER) == SeverityLevel.CRITICAL

    @pytest.mark.parametrize("value,target", [
        (math.nan, 10.0),
        (10.0, math.inf),
        (-math.inf, 10.0),
    ])
    def test_non_finite_raises(self, value, target):
        with pytest.raises(ConfigurationError):
            classify(value, target, HIGHER)

    def test_custom_thresholds(self):
        """测试：阈值来自配置"""
        strict = ThresholdConfig(ok_ratio=0.95, warn_ratio=0.8)
        assert classify(9.0, 10.0, HIGHER, strict) == SeverityLevel.WARNING
        assert classify(7.5, 10.0, HIGHER, strict) == SeverityLevel.CRITICAL
        assert classify(9.5, 10.0, HIGHER, strict) == SeverityLevel.OK

    def test_direction_accepts_plain_string(self):
        assert classify(9.0, 10.0, "higherIsBetter") == SeverityLevel.OK


class TestOnTarget:
    """onTarget 方向：偏离目标（快或慢）都变差"""

    def test_ratio_is_symmetric(self):
        assert ratio(11.0, 10.0, Direction.ON_TARGET) == pytest.approx(10 / 11)
        assert ratio(6.0, 10.0, Direction.ON_TARGET) == pytest.approx(0.6)

    def test_classify(self):
        assert classify(11.0, 10.0, Direction.ON_TARGET) == SeverityLevel.OK
        assert classify(6.0, 10.0, Direction.ON_TARGET) == SeverityLevel.CRITICAL
        assert classify(13.0, 10.0, Direction.ON_TARGET) == SeverityLevel.WARNING

    def test_degenerate_ratio_is_none(self):
        assert ratio(0.0, 10.0, Direction.ON_TARGET) is None


class TestEvaluateStation:
    """工位级分级测试"""

    @staticmethod
    def _store(values, targets, station_id=1):
        store = MetricStore()
        store.set_targets(station_id, targets)
        now = datetime(2026, 1, 1, 8, 0, 0)
        for metric, value in values.items():
            store.put(MetricSample(station_id=station_id, metric=metric, value=value, fetched_at=now))
        return store

    def test_missing_metrics_are_absent(self):
        """测试：没有样本或没有目标值的指标不出现在结果中"""
        store = self._store(
            values={MetricName.TOTAL_CYCLE_TIME: 11.0, MetricName.OEE: 50.0},
            targets={MetricName.TOTAL_CYCLE_TIME: 10.0, MetricName.FPY: 95.0},
        )

        result = evaluate_station(store.snapshot(), 1)

        assert result.severities == {MetricName.TOTAL_CYCLE_TIME: SeverityLevel.OK}
        assert result.groups == {MetricGroup.CYCLE_TIMES: SeverityLevel.OK}
        assert MetricGroup.KPIS not in result.groups

    def test_groups_use_worst_level(self):
        store = self._store(
            values={
                MetricName.OEE: 85.0,          # 85/85 OK
                MetricName.FPY: 72.0,          # 72/90 WARNING
                MetricName.COUNT_NIO: 30.0,    # 10/30 CRITICAL
            },
            targets={
                MetricName.OEE: 85.0,
                MetricName.FPY: 90.0,
                MetricName.COUNT_NIO: 10.0,
            },
        )

        result = evaluate_station(store.snapshot(), 1)

        assert result.severities[MetricName.FPY] == SeverityLevel.WARNING
        assert result.severities[MetricName.COUNT_NIO] == SeverityLevel.CRITICAL
        assert result.groups[MetricGroup.KPIS] == SeverityLevel.CRITICAL

    def test_non_finite_value_recorded_as_critical(self):
        """测试：非有限输入在工位级被记为 CRITICAL，而不是抛出"""
        store = self._store(
            values={MetricName.OEE: math.nan},
            targets={MetricName.OEE: 80.0},
        )

        result = evaluate_station(store.snapshot(), 1)

        assert result.severities[MetricName.OEE] == SeverityLevel.CRITICAL
        assert MetricName.OEE not in result.ratios

    def test_configured_direction_is_used(self):
        store = self._store(
            values={MetricName.TOTAL_CYCLE_TIME: 6.0},
            targets={MetricName.TOTAL_CYCLE_TIME: 10.0},
        )
        directions = {MetricName.TOTAL_CYCLE_TIME: Direction.LOWER_IS_BETTER}

        result = evaluate_station(store.snapshot(), 1, directions=directions)

        assert result.severities[MetricName.TOTAL_CYCLE_TIME] == SeverityLevel.OK

    def test_unknown_station(self):
        result = evaluate_station(MetricStore().snapshot(), 42)
        assert result.severities == {}
        assert result.groups == {}

    def test_ratio_computed_once_per_metric(self, monkeypatch):
        """测试：每个指标只计算一次比值，分级直接由该比值得出"""
        calls = []
        original_ratio = classifier.ratio

        def counting_ratio(value, target, direction):
            calls.append(direction)
            return original_ratio(value, target, direction)

        monkeypatch.setattr(classifier, "ratio", counting_ratio)
        store = self._store(
            values={MetricName.TOTAL_CYCLE_TIME: 11.0, MetricName.OEE: 60.0},
            targets={MetricName.TOTAL_CYCLE_TIME: 10.0, MetricName.OEE: 80.0},
        )

        result = evaluate_station(store.snapshot(), 1)

        assert len(calls) == 2
        assert result.severities[MetricName.OEE] == SeverityLevel.WARNING
        assert result.ratios[MetricName.OEE] == pytest.approx(0.75)


class TestLevelForRatio:
    def test_bands(self):
        assert level_for_ratio(0.9) == SeverityLevel.OK
        assert level_for_ratio(0.7) == SeverityLevel.WARNING
        assert level_for_ratio(0.69) == SeverityLevel.CRITICAL
        assert level_for_ratio(None) == SeverityLevel.CRITICAL

    def test_custom_thresholds(self):
        thresholds = ThresholdConfig(ok_ratio=0.8, warn_ratio=0.5)
        assert level_for_ratio(0.85, thresholds) == SeverityLevel.OK
        assert level_for_ratio(0.5, thresholds) == SeverityLevel.WARNING

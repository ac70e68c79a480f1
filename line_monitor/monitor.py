"""
产线监控门面

把注册表、指标存储、分级、瓶颈跟踪、轮询调度组装在一起，
对外提供注册/注销/强制刷新等入口，并通过事件总线发出分级与瓶颈变化。
"""

import logging
from typing import Dict, List, Mapping, Optional

from .bottleneck import BottleneckTracker
from .classifier import evaluate_station
from .config import AppConfig, get_config
from .errors import ConfigurationError, FetchError, RegistrationError
from .events import AggregateSeverityUpdated, EventBus, SeverityUpdated
from .models import (
    BottleneckResponse,
    MetricGroup,
    MetricName,
    MonitorStatus,
    SeverityLevel,
    Station,
    StationEvaluation,
    StationResponse,
)
from .registry import StationRegistry
from .scheduler import PollingScheduler
from .source import MetricsSource
from .store import MetricSnapshot, MetricStore

logger = logging.getLogger(__name__)


class LineMonitor:
    """单条产线的监控核心"""

    def __init__(
        self,
        config: AppConfig,
        source: MetricsSource,
        bus: Optional[EventBus] = None,
    ):
        self.config = config
        self.source = source
        self.bus = bus or EventBus(history_size=config.events.history_size)

        self.registry = StationRegistry()
        self.store = MetricStore()
        self.tracker = BottleneckTracker(rule=config.bottleneck.rule)
        self.scheduler = PollingScheduler(
            registry=self.registry,
            store=self.store,
            source=source,
            config=config.scheduler,
            bus=self.bus,
            evaluator=self.evaluate,
        )

        # 上一次发布的分级，用于只在变化时发事件
        self._severities: Dict[int, Dict[MetricName, SeverityLevel]] = {}
        self._groups: Dict[int, Dict[MetricGroup, SeverityLevel]] = {}

        self.registry.add_unregister_listener(self._on_unregistered)

    # ------------------------------------------------------------------
    # 入口
    # ------------------------------------------------------------------

    def register_station(
        self,
        line_id: int,
        station_id: int,
        targets: Mapping[MetricName, float],
    ) -> bool:
        """
        注册工位及其目标值

        Returns:
            是否为新注册（重复注册或冲突时返回 False）
        """
        try:
            parsed = {MetricName(k): float(v) for k, v in targets.items()}
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid targets for station {station_id}: {e}") from e

        for metric, value in parsed.items():
            if value <= 0:
                logger.warning(
                    f"Station {station_id} target {metric.value}={value} is degenerate, "
                    "metric will be reported as critical"
                )

        station = Station(line_id=line_id, station_id=station_id)
        try:
            created = self.registry.register(station)
        except RegistrationError as e:
            logger.warning(f"Ignoring registration: {e}")
            return False

        if created:
            self.store.set_targets(station_id, parsed)
        return created

    async def register_station_from_source(
        self,
        line_id: int,
        station_id: int,
        defer_targets: bool = False,
    ) -> bool:
        """
        从指标源拉取目标值后注册工位

        Args:
            defer_targets: 拉取失败时仍注册工位（目标值为空），由调度器在之后的周期中重试；
                重试失败与指标拉取失败一样计入缺数告警

        Raises:
            FetchError: 目标值拉取失败且 defer_targets 为 False
        """
        if self.registry.is_registered(station_id):
            return False

        try:
            targets = await self.source.fetch_targets(Station(line_id=line_id, station_id=station_id))
        except FetchError as e:
            if not defer_targets:
                raise
            logger.warning(f"Station {station_id} registered without targets, will retry: {e}")
            created = self.register_station(line_id, station_id, {})
            if created:
                self.scheduler.await_targets(station_id)
            return created

        return self.register_station(line_id, station_id, targets)

    def unregister_station(self, station_id: int) -> bool:
        """注销工位（未注册时记录日志并返回 False）"""
        try:
            self.registry.unregister(station_id)
        except RegistrationError as e:
            logger.warning(f"Ignoring unregistration: {e}")
            return False
        return True

    def force_refresh(self) -> List[int]:
        return self.scheduler.force_refresh()

    def enable(self):
        self.scheduler.enable()

    def disable(self):
        self.scheduler.disable()

    def acknowledge_bottleneck(self):
        self.tracker.acknowledge()

    def reset_bottleneck(self):
        """视图/过滤切换时调用"""
        self.tracker.reset()

    def _on_unregistered(self, station: Station):
        station_id = station.station_id
        self.scheduler.forget(station)
        self.store.remove_station(station_id)
        self.tracker.forget(station_id)
        self._severities.pop(station_id, None)
        self._groups.pop(station_id, None)

    # ------------------------------------------------------------------
    # 分级与瓶颈
    # ------------------------------------------------------------------

    def evaluate(self, snapshot: MetricSnapshot) -> Dict[int, StationEvaluation]:
        """对快照中所有已注册工位分级，更新瓶颈并发出变化事件"""
        evaluations: Dict[int, StationEvaluation] = {}
        for station_id in self.registry.station_ids():
            evaluation = evaluate_station(
                snapshot,
                station_id,
                directions=self.config.metrics.directions,
                thresholds=self.config.thresholds,
            )
            evaluations[station_id] = evaluation
            self._publish(evaluation)

        event = self.tracker.update(evaluations)
        if event is not None:
            self.bus.emit(event)
            if self.config.bottleneck.auto_acknowledge:
                self.tracker.acknowledge()

        return evaluations

    def evaluate_now(self) -> Dict[int, StationEvaluation]:
        return self.evaluate(self.store.snapshot())

    def _publish(self, evaluation: StationEvaluation):
        station_id = evaluation.station_id

        previous = self._severities.get(station_id, {})
        for metric, level in evaluation.severities.items():
            if previous.get(metric) != level:
                self.bus.emit(SeverityUpdated(station_id=station_id, metric=metric, level=level))
        self._severities[station_id] = dict(evaluation.severities)

        previous_groups = self._groups.get(station_id, {})
        for group, level in evaluation.groups.items():
            if previous_groups.get(group) != level:
                self.bus.emit(AggregateSeverityUpdated(station_id=station_id, group=group, level=level))
        self._groups[station_id] = dict(evaluation.groups)

    # ------------------------------------------------------------------
    # 状态视图
    # ------------------------------------------------------------------

    def bottleneck_view(self) -> BottleneckResponse:
        return BottleneckResponse(
            state=self.tracker.state.value,
            current_station_id=self.tracker.current_station_id,
            previous_station_id=self.tracker.previous_station_id,
            rule=self.tracker.rule_name,
        )

    def status(self) -> MonitorStatus:
        return MonitorStatus(
            state=self.scheduler.state.value,
            enabled=self.scheduler.enabled,
            tick=self.scheduler.tick_count,
            registered=self.registry.station_ids(),
            in_flight=self.scheduler.in_flight_ids(),
            missing=self.scheduler.missing_ids(),
            bottleneck=self.bottleneck_view(),
        )

    def station_view(self, station_id: int) -> StationResponse:
        """
        Raises:
            KeyError: 工位未注册
        """
        station = self.registry.get(station_id)
        return StationResponse(
            line_id=station.line_id,
            station_id=station_id,
            has_data=self.store.has_data(station_id),
            data_missing=station_id in self.scheduler.missing_ids(),
            targets_pending=self.scheduler.is_awaiting_targets(station_id),
            is_bottleneck=self.tracker.current_station_id == station_id,
            last_fetched_at=self.store.last_fetched_at(station_id),
            targets=dict(self.store.get_targets(station_id)),
            values=self.store.values_for(station_id),
            severities=self._severities.get(station_id, {}),
            groups=self._groups.get(station_id, {}),
        )

    def stations_view(self) -> List[StationResponse]:
        return [self.station_view(sid) for sid in self.registry.station_ids()]


# 全局监控实例（延迟创建）
_monitor: Optional[LineMonitor] = None


def create_monitor(config: AppConfig) -> LineMonitor:
    source = MetricsSource(
        base_url=config.source.base_url,
        timeout=config.source.timeout,
        token=config.source.token,
    )
    return LineMonitor(config, source)


def get_monitor() -> LineMonitor:
    """获取全局监控实例（单例模式）"""
    global _monitor
    if _monitor is None:
        _monitor = create_monitor(get_config())
    return _monitor


def reset_monitor():
    """重置监控实例（主要用于测试）"""
    global _monitor
    _monitor = None

"""
轮询调度

每个周期为每个已注册工位发起一次拉取，并驱动数据可用性验证。

状态：idle -> polling -> verifying -> ready，verifying/ready 下有工位缺数时进入 degraded，
缺数工位全部恢复后自动回到 ready。

约束：
- 同一工位同时最多一个在途拉取，上一次未完成时新周期不会重复发起
- 周期不等待单个工位完成，慢工位不阻塞其他工位
- 超过 fetch_timeout_intervals 个周期仍未完成的拉取视为失败并取消
- 工位注销或监控关闭后，在途拉取的结果在完成时丢弃，不写入存储
- 目标值待载入的工位在同一拉取中先补拉目标值，失败与指标拉取失败同样计入告警
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Set

from .config import SchedulerConfig
from .errors import FetchError
from .events import EventBus, MonitorReady, StationDataMissing, StationDataRecovered
from .models import MetricName, MetricSample, Station
from .registry import StationRegistry
from .source import MetricsSource
from .store import MetricSnapshot, MetricStore

logger = logging.getLogger(__name__)

Evaluator = Callable[[MetricSnapshot], None]


class SchedulerState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    VERIFYING = "verifying"
    READY = "ready"
    DEGRADED = "degraded"


@dataclass
class PollCycle:
    """一个调度周期：待发起与本周期发起且仍在途的工位（两者不相交）"""
    tick: int
    started_at: datetime
    stations_pending: Set[int] = field(default_factory=set)
    in_flight: Set[int] = field(default_factory=set)
    completed_at: Optional[datetime] = None

    def dispatch(self, station_id: int):
        self.stations_pending.discard(station_id)
        self.in_flight.add(station_id)
        # 强制刷新可能向已完成的周期追加拉取
        self.completed_at = None

    def resolve(self, station_id: int):
        self.in_flight.discard(station_id)
        self.mark_if_complete()

    def drop(self, station_id: int):
        self.stations_pending.discard(station_id)
        self.in_flight.discard(station_id)
        self.mark_if_complete()

    def mark_if_complete(self):
        if self.completed_at is None and not self.in_flight and not self.stations_pending:
            self.completed_at = datetime.utcnow()


@dataclass
class _InFlight:
    token: int
    tick: int
    task: Optional[asyncio.Task] = None


class PollingScheduler:
    """工位轮询调度器"""

    def __init__(
        self,
        registry: StationRegistry,
        store: MetricStore,
        source: MetricsSource,
        config: SchedulerConfig,
        bus: EventBus,
        evaluator: Optional[Evaluator] = None,
    ):
        self._registry = registry
        self._store = store
        self._source = source
        self._config = config
        self._bus = bus
        self._evaluator = evaluator

        self.enabled = config.enabled
        self.state = SchedulerState.IDLE
        self._tick_no = 0
        self._cycle: Optional[PollCycle] = None

        # 在途拉取：{station_id: _InFlight}，完成时按 token 识别过期结果
        self._in_flight: Dict[int, _InFlight] = {}
        self._tokens = itertools.count(1)

        # 每个工位首次发起拉取的周期号（用于验证窗口）
        self._first_dispatch: Dict[int, int] = {}
        self._failures: Dict[int, int] = {}
        self._missing: Set[int] = set()

        # 注册时目标值未能载入的工位，拉取指标前先补拉目标值
        self._awaiting_targets: Set[int] = set()

        self._tasks: Set[asyncio.Task] = set()
        self._runner: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # 状态查询
    # ------------------------------------------------------------------

    @property
    def tick_count(self) -> int:
        return self._tick_no

    @property
    def current_cycle(self) -> Optional[PollCycle]:
        return self._cycle

    def in_flight_ids(self) -> List[int]:
        return sorted(self._in_flight)

    def missing_ids(self) -> List[int]:
        return sorted(self._missing)

    def is_awaiting_targets(self, station_id: int) -> bool:
        return station_id in self._awaiting_targets

    def await_targets(self, station_id: int):
        """标记工位目标值待载入：之后每次拉取先重试目标值，失败计入连续失败"""
        self._awaiting_targets.add(station_id)

    def consecutive_failures(self, station_id: int) -> int:
        return self._failures.get(station_id, 0)

    # ------------------------------------------------------------------
    # 调度
    # ------------------------------------------------------------------

    async def tick(self) -> Optional[PollCycle]:
        """
        执行一个调度周期

        1. 过期在途拉取记为失败
        2. ready/degraded 下对周期开始时的快照做分级与瓶颈识别
        3. 为不在途的工位发起拉取
        4. 检查数据可用性
        """
        self._tick_no += 1

        if not self.enabled or len(self._registry) == 0:
            self._set_state(SchedulerState.IDLE)
            self._cycle = None
            return None

        if self.state is SchedulerState.IDLE:
            self._set_state(SchedulerState.POLLING)

        self._expire_stale_fetches()

        if self.state in (SchedulerState.READY, SchedulerState.DEGRADED) and self._evaluator:
            snapshot = self._store.snapshot()
            try:
                self._evaluator(snapshot)
            except Exception as e:
                logger.error(f"Evaluation failed on tick {self._tick_no}: {e}", exc_info=True)

        cycle = PollCycle(
            tick=self._tick_no,
            started_at=datetime.utcnow(),
            stations_pending={
                sid for sid in self._registry.station_ids() if sid not in self._in_flight
            },
        )
        self._cycle = cycle
        for station_id in sorted(cycle.stations_pending):
            self._dispatch(station_id, cycle)
        cycle.mark_if_complete()

        if self.state is SchedulerState.POLLING:
            self._set_state(SchedulerState.VERIFYING)

        self._check_availability()
        return cycle

    def force_refresh(self) -> List[int]:
        """立即为所有不在途的工位发起拉取，返回本次发起的工位"""
        if not self.enabled or len(self._registry) == 0:
            return []

        if self._cycle is None:
            self._cycle = PollCycle(tick=self._tick_no, started_at=datetime.utcnow())

        dispatched = [sid for sid in self._registry.station_ids() if sid not in self._in_flight]
        for station_id in dispatched:
            self._dispatch(station_id, self._cycle)

        logger.info(f"Forced refresh for stations {dispatched}")
        return dispatched

    def _dispatch(self, station_id: int, cycle: PollCycle):
        station = self._registry.get(station_id)
        token = next(self._tokens)
        entry = _InFlight(token=token, tick=self._tick_no)
        self._in_flight[station_id] = entry
        cycle.dispatch(station_id)
        self._first_dispatch.setdefault(station_id, self._tick_no)

        task = asyncio.create_task(self._fetch(station, token))
        entry.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _fetch(self, station: Station, token: int):
        try:
            targets = None
            if station.station_id in self._awaiting_targets:
                targets = await self._source.fetch_targets(station)
            samples = await self._source.fetch_station(station)
        except FetchError as e:
            self._complete(station.station_id, token, error=e)
        except Exception as e:
            logger.error(f"Unexpected error fetching station {station.station_id}: {e}", exc_info=True)
            self._complete(station.station_id, token, error=e)
        else:
            self._complete(station.station_id, token, samples=samples, targets=targets)

    def _complete(
        self,
        station_id: int,
        token: int,
        samples: Optional[List[MetricSample]] = None,
        error: Optional[Exception] = None,
        targets: Optional[Mapping[MetricName, float]] = None,
    ):
        entry = self._in_flight.get(station_id)
        if entry is None or entry.token != token:
            logger.debug(f"Discarding stale fetch result for station {station_id}")
            return

        del self._in_flight[station_id]
        self._resolve_in_cycle(station_id, entry.tick)

        if error is not None:
            self._record_failure(station_id, str(error))
        else:
            if targets is not None:
                self._store.set_targets(station_id, targets)
                self._awaiting_targets.discard(station_id)
                logger.info(f"Loaded targets for station {station_id}")
            self._store.put_many(samples or [])
            self._failures.pop(station_id, None)
            if station_id in self._missing:
                self._missing.discard(station_id)
                logger.info(f"Station {station_id} reported data again")
                self._bus.emit(StationDataRecovered(station_id=station_id))

        self._check_availability()

    def _resolve_in_cycle(self, station_id: int, tick: int):
        if self._cycle is not None and self._cycle.tick == tick:
            self._cycle.resolve(station_id)

    def _record_failure(self, station_id: int, reason: str):
        count = self._failures.get(station_id, 0) + 1
        self._failures[station_id] = count
        logger.warning(f"Fetch failed for station {station_id} ({count} consecutive): {reason}")

    def _expire_stale_fetches(self):
        limit = self._config.fetch_timeout_intervals
        for station_id, entry in list(self._in_flight.items()):
            if self._tick_no - entry.tick >= limit:
                # 取消旧请求，同一工位不会出现两个并发拉取
                if entry.task is not None:
                    entry.task.cancel()
                del self._in_flight[station_id]
                self._resolve_in_cycle(station_id, entry.tick)
                self._record_failure(station_id, f"no response within {limit} intervals")

    # ------------------------------------------------------------------
    # 数据可用性验证
    # ------------------------------------------------------------------

    def _check_availability(self):
        if self.state in (SchedulerState.IDLE, SchedulerState.POLLING):
            return

        registered = self._registry.station_ids()
        for station_id in registered:
            if station_id in self._missing:
                continue

            has_data = self._store.has_data(station_id)
            first = self._first_dispatch.get(station_id, self._tick_no)
            overdue = not has_data and self._tick_no - first >= self._config.verify_max_intervals
            failing = self._failures.get(station_id, 0) >= self._config.max_consecutive_failures

            if overdue or failing:
                reason = "no_data" if not has_data else "fetch_failed"
                self._missing.add(station_id)
                logger.warning(f"Station {station_id} has no data ({reason})")
                self._bus.emit(StationDataMissing(station_id=station_id, reason=reason))

        if self._missing:
            self._set_state(SchedulerState.DEGRADED)
        elif self.state is SchedulerState.VERIFYING:
            if all(self._store.has_data(sid) for sid in registered):
                self._become_ready(registered)
        elif self.state is SchedulerState.DEGRADED:
            self._become_ready(registered)

    def _become_ready(self, registered: List[int]):
        self._set_state(SchedulerState.READY)
        self._bus.emit(MonitorReady(stations=registered))

    def _set_state(self, state: SchedulerState):
        if state is not self.state:
            logger.info(f"Scheduler state: {self.state.value} -> {state.value}")
            self.state = state

    # ------------------------------------------------------------------
    # 注销 / 启停
    # ------------------------------------------------------------------

    def forget(self, station: Station):
        """工位注销：从在途/待发集合中移除，之后到达的结果会被丢弃"""
        station_id = station.station_id
        entry = self._in_flight.pop(station_id, None)
        if self._cycle is not None:
            self._cycle.drop(station_id)
        if entry is not None:
            logger.debug(f"Cancelled in-flight fetch for station {station_id}")

        self._first_dispatch.pop(station_id, None)
        self._failures.pop(station_id, None)
        self._missing.discard(station_id)
        self._awaiting_targets.discard(station_id)

        if len(self._registry) == 0:
            self._set_state(SchedulerState.IDLE)
            self._cycle = None
        else:
            self._check_availability()

    def enable(self):
        """开启监控：下一个周期重新开始验证"""
        if self.enabled:
            return
        self.enabled = True
        self._first_dispatch.clear()
        self._failures.clear()
        self._missing.clear()
        logger.info("Monitoring enabled")

    def disable(self):
        """关闭监控：丢弃在途结果，回到 idle"""
        if not self.enabled:
            return
        self.enabled = False
        self._in_flight.clear()
        self._missing.clear()
        self._cycle = None
        self._set_state(SchedulerState.IDLE)
        logger.info("Monitoring disabled")

    # ------------------------------------------------------------------
    # 运行循环
    # ------------------------------------------------------------------

    async def run(self):
        """
        运行调度循环

        每隔 interval 秒执行一个周期，单个周期出错不会终止循环。
        """
        interval = self._config.interval
        logger.info(f"Starting polling scheduler (interval={interval}s)")

        try:
            while True:
                try:
                    await self.tick()
                except Exception as e:
                    logger.error(f"Scheduler tick error: {e}", exc_info=True)
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("Polling scheduler cancelled")
            raise

    def start(self) -> asyncio.Task:
        """启动调度循环（已在运行时返回原任务，不会重复调度）"""
        if self._runner is not None and not self._runner.done():
            return self._runner
        self._runner = asyncio.create_task(self.run())
        return self._runner

    async def drain(self):
        """等待当前所有拉取任务结束"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def stop(self):
        """停止调度循环并取消在途任务"""
        tasks = list(self._tasks)
        if self._runner is not None:
            tasks.append(self._runner)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._runner = None
        self._in_flight.clear()

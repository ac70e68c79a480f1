"""
指标存储

保存每个工位每个指标的最新样本，以及注册时载入的目标值。
只有拉取完成回调会写入；读取方在每个调度周期开始时取一次不可变快照。
"""

from datetime import datetime
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .models import MetricName, MetricSample

SampleKey = Tuple[int, MetricName]

_EMPTY: Mapping[MetricName, float] = MappingProxyType({})


class MetricSnapshot:
    """某一时刻存储内容的只读视图"""

    def __init__(
        self,
        samples: Mapping[SampleKey, MetricSample],
        targets: Mapping[int, Mapping[MetricName, float]],
        taken_at: datetime,
    ):
        self._samples = MappingProxyType(dict(samples))
        self._targets = MappingProxyType(dict(targets))
        self.taken_at = taken_at

    def latest(self, station_id: int, metric: MetricName) -> Optional[MetricSample]:
        return self._samples.get((station_id, metric))

    def value(self, station_id: int, metric: MetricName) -> Optional[float]:
        sample = self.latest(station_id, metric)
        return sample.value if sample is not None else None

    def targets_for(self, station_id: int) -> Mapping[MetricName, float]:
        return self._targets.get(station_id, _EMPTY)

    def station_ids(self) -> List[int]:
        """有目标值或有样本的工位（升序）"""
        ids = set(self._targets)
        ids.update(station_id for station_id, _ in self._samples)
        return sorted(ids)

    def has_data(self, station_id: int) -> bool:
        return any(key[0] == station_id for key in self._samples)


class MetricStore:
    """
    最新指标与目标值的存放处

    写入按 (station_id, metric) 键覆盖；快照拷贝出独立的字典，
    之后的写入不会影响已经取出的快照。
    """

    def __init__(self):
        # {(station_id, metric): MetricSample}
        self._samples: Dict[SampleKey, MetricSample] = {}

        # {station_id: {metric: target}}
        self._targets: Dict[int, Mapping[MetricName, float]] = {}

    def set_targets(self, station_id: int, targets: Mapping[MetricName, float]):
        """设置工位目标值（注册期间不可变）"""
        self._targets[station_id] = MappingProxyType(
            {MetricName(k): float(v) for k, v in targets.items()}
        )

    def get_targets(self, station_id: int) -> Mapping[MetricName, float]:
        return self._targets.get(station_id, _EMPTY)

    def put(self, sample: MetricSample) -> bool:
        """
        写入样本

        只有比已有样本更新（fetched_at 不早于已有样本）时才替换。

        Returns:
            是否写入
        """
        key = (sample.station_id, sample.metric)
        current = self._samples.get(key)
        if current is not None and current.fetched_at > sample.fetched_at:
            return False
        self._samples[key] = sample
        return True

    def put_many(self, samples: Iterable[MetricSample]) -> int:
        return sum(1 for sample in samples if self.put(sample))

    def latest(self, station_id: int, metric: MetricName) -> Optional[MetricSample]:
        return self._samples.get((station_id, metric))

    def has_data(self, station_id: int) -> bool:
        return any(key[0] == station_id for key in self._samples)

    def last_fetched_at(self, station_id: int) -> Optional[datetime]:
        times = [s.fetched_at for (sid, _), s in self._samples.items() if sid == station_id]
        return max(times) if times else None

    def values_for(self, station_id: int) -> Dict[MetricName, float]:
        return {
            metric: sample.value
            for (sid, metric), sample in self._samples.items()
            if sid == station_id
        }

    def snapshot(self) -> MetricSnapshot:
        return MetricSnapshot(self._samples, self._targets, datetime.utcnow())

    def remove_station(self, station_id: int):
        """移除工位相关数据"""
        for key in [k for k in self._samples if k[0] == station_id]:
            del self._samples[key]
        self._targets.pop(station_id, None)

    def clear(self):
        self._samples.clear()
        self._targets.clear()

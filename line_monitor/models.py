"""
数据模型定义

包括：
- 指标目录（指标名、分组、方向、单位的显式映射表）
- 领域模型（工位、样本、分级结果）
- Pydantic 响应模型（用于 API）
"""

from datetime import datetime
from enum import Enum, IntEnum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# 指标目录
# =============================================================================

class SeverityLevel(IntEnum):
    """三级分级，数值越大越严重"""
    OK = 0
    WARNING = 1
    CRITICAL = 2


class Direction(str, Enum):
    """指标方向"""
    HIGHER_IS_BETTER = "higherIsBetter"
    LOWER_IS_BETTER = "lowerIsBetter"
    ON_TARGET = "onTarget"  # 偏离目标（无论快慢）都算变差


class MetricGroup(str, Enum):
    """指标分组（汇总显示单位）"""
    CYCLE_TIMES = "cycleTimes"
    KPIS = "kpis"


class MetricName(str, Enum):
    """固定的指标集合"""
    TOTAL_CYCLE_TIME = "totalCycleTime"
    PROCESS_TIME = "processTime"
    EXIT_TIME = "exitTime"
    CHANGE_TIME = "changeTime"
    OEE = "oee"
    FPY = "fpy"
    PART_COUNT = "partCount"
    COUNT_NIO = "countNIO"
    PRODUCTIVITY = "productivity"


METRIC_GROUPS: Dict[MetricName, MetricGroup] = {
    MetricName.TOTAL_CYCLE_TIME: MetricGroup.CYCLE_TIMES,
    MetricName.PROCESS_TIME: MetricGroup.CYCLE_TIMES,
    MetricName.EXIT_TIME: MetricGroup.CYCLE_TIMES,
    MetricName.CHANGE_TIME: MetricGroup.CYCLE_TIMES,
    MetricName.OEE: MetricGroup.KPIS,
    MetricName.FPY: MetricGroup.KPIS,
    MetricName.PART_COUNT: MetricGroup.KPIS,
    MetricName.COUNT_NIO: MetricGroup.KPIS,
    MetricName.PRODUCTIVITY: MetricGroup.KPIS,
}

DEFAULT_DIRECTIONS: Dict[MetricName, Direction] = {
    MetricName.TOTAL_CYCLE_TIME: Direction.ON_TARGET,
    MetricName.PROCESS_TIME: Direction.ON_TARGET,
    MetricName.EXIT_TIME: Direction.ON_TARGET,
    MetricName.CHANGE_TIME: Direction.ON_TARGET,
    MetricName.OEE: Direction.HIGHER_IS_BETTER,
    MetricName.FPY: Direction.HIGHER_IS_BETTER,
    MetricName.PART_COUNT: Direction.HIGHER_IS_BETTER,
    MetricName.COUNT_NIO: Direction.LOWER_IS_BETTER,
    MetricName.PRODUCTIVITY: Direction.HIGHER_IS_BETTER,
}

METRIC_UNITS: Dict[MetricName, str] = {
    MetricName.TOTAL_CYCLE_TIME: "s",
    MetricName.PROCESS_TIME: "s",
    MetricName.EXIT_TIME: "s",
    MetricName.CHANGE_TIME: "s",
    MetricName.OEE: "%",
    MetricName.FPY: "%",
    MetricName.PART_COUNT: "",
    MetricName.COUNT_NIO: "",
    MetricName.PRODUCTIVITY: "",
}


def metrics_in_group(group: MetricGroup) -> List[MetricName]:
    """返回分组内的指标（按枚举顺序）"""
    return [m for m in MetricName if METRIC_GROUPS[m] is group]


# =============================================================================
# 领域模型
# =============================================================================

class Station(BaseModel):
    """工位标识：(line_id, station_id)，station_id 在产线内唯一"""
    model_config = ConfigDict(frozen=True)

    line_id: int
    station_id: int


class MetricSample(BaseModel):
    """一次拉取得到的单个指标值，新样本替换旧样本，不做修改"""
    model_config = ConfigDict(frozen=True)

    station_id: int
    metric: MetricName
    value: float
    fetched_at: datetime


class StationPlacement(BaseModel):
    """场景布局文件中的一行：位置、旋转、工位号"""
    x: float
    y: float
    z: float
    rx: float
    ry: float
    rz: float
    station_id: int


class StationEvaluation(BaseModel):
    """单个工位一次分级的结果（缺失指标不出现在字典中）"""
    station_id: int
    severities: Dict[MetricName, SeverityLevel] = Field(default_factory=dict)
    ratios: Dict[MetricName, float] = Field(default_factory=dict)
    groups: Dict[MetricGroup, SeverityLevel] = Field(default_factory=dict)

    def group_severity(self, group: MetricGroup) -> Optional[SeverityLevel]:
        return self.groups.get(group)


# =============================================================================
# Pydantic 请求/响应模型（用于 API）
# =============================================================================

class StationCreate(BaseModel):
    """注册工位请求模型"""
    line_id: int
    station_id: int
    targets: Optional[Dict[MetricName, float]] = None  # 为空时从指标源拉取


class StationResponse(BaseModel):
    """工位响应模型（GET /api/stations）"""
    line_id: int
    station_id: int
    has_data: bool = False
    data_missing: bool = False
    targets_pending: bool = False  # 目标值尚未从指标源载入
    is_bottleneck: bool = False
    last_fetched_at: Optional[datetime] = None
    targets: Dict[MetricName, float] = Field(default_factory=dict)
    values: Dict[MetricName, float] = Field(default_factory=dict)
    severities: Dict[MetricName, SeverityLevel] = Field(default_factory=dict)
    groups: Dict[MetricGroup, SeverityLevel] = Field(default_factory=dict)


class BottleneckResponse(BaseModel):
    """瓶颈状态"""
    state: str
    current_station_id: Optional[int] = None
    previous_station_id: Optional[int] = None
    rule: str


class MonitorStatus(BaseModel):
    """GET /api/status 响应"""
    state: str
    enabled: bool
    tick: int
    registered: List[int] = Field(default_factory=list)
    in_flight: List[int] = Field(default_factory=list)
    missing: List[int] = Field(default_factory=list)
    bottleneck: BottleneckResponse


class EventResponse(BaseModel):
    """事件响应模型"""
    seq: int
    ts: datetime
    type: str
    station_id: Optional[int] = None
    payload: Dict[str, object] = Field(default_factory=dict)

"""
配置加载模块

从 config.yaml 加载配置，支持 Pydantic 验证和环境变量覆盖。
"""

import os
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import DEFAULT_DIRECTIONS, Direction, MetricName

# 管理员 Token 占位值：保持此值时 API 不校验写操作
ADMIN_TOKEN_PLACEHOLDER = "CHANGE_ME_IN_PRODUCTION"


class ThresholdConfig(BaseModel):
    """分级阈值：r >= ok_ratio 为 OK，warn_ratio <= r < ok_ratio 为 WARNING"""
    ok_ratio: float = 0.9
    warn_ratio: float = 0.7

    @model_validator(mode="after")
    def _check_order(self):
        if self.warn_ratio <= 0 or self.ok_ratio <= 0:
            raise ValueError("threshold ratios must be positive")
        if self.warn_ratio > self.ok_ratio:
            raise ValueError(
                f"warn_ratio ({self.warn_ratio}) must not exceed ok_ratio ({self.ok_ratio})"
            )
        return self


class MetricsConfig(BaseModel):
    """每个指标的方向（未配置的沿用默认值）"""
    directions: Dict[MetricName, Direction] = Field(
        default_factory=lambda: dict(DEFAULT_DIRECTIONS)
    )

    @field_validator("directions", mode="after")
    @classmethod
    def _merge_defaults(cls, value: Dict[MetricName, Direction]) -> Dict[MetricName, Direction]:
        merged = dict(DEFAULT_DIRECTIONS)
        merged.update(value)
        return merged


class SchedulerConfig(BaseModel):
    """轮询调度配置"""
    interval: float = 5.0
    fetch_timeout_intervals: int = 2  # 超过 N 个周期未完成视为失败
    verify_max_intervals: int = 3  # 数据验证窗口（周期数）
    max_consecutive_failures: int = 3  # 连续失败 N 次发出缺数告警
    enabled: bool = True

    @field_validator("interval")
    @classmethod
    def _positive_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("interval must be positive")
        return value


class BottleneckConfig(BaseModel):
    """瓶颈识别配置"""
    rule: str = "worst_cycle_severity"
    auto_acknowledge: bool = True


class SourceConfig(BaseModel):
    """远端指标 API 配置"""
    base_url: str = "http://localhost:8000/api"
    timeout: float = 2.0
    token: Optional[str] = None


class LineConfig(BaseModel):
    """启动时注册的产线与工位"""
    line_id: int = 1
    layout_file: Optional[str] = None
    stations: List[int] = Field(default_factory=list)


class APIConfig(BaseModel):
    """API 服务配置"""
    host: str = "0.0.0.0"
    port: int = 8090
    cors_origins: List[str] = ["http://localhost:8090", "http://127.0.0.1:8090"]
    admin_token: str = ADMIN_TOKEN_PLACEHOLDER


class EventsConfig(BaseModel):
    """事件历史配置"""
    history_size: int = 500


class LoggingConfig(BaseModel):
    """日志配置"""
    level: str = "INFO"
    file: Optional[str] = None


class AppConfig(BaseSettings):
    """应用配置（完整配置），环境变量 LINE_MONITOR_<SECTION>__<KEY> 优先于 YAML"""
    model_config = SettingsConfigDict(
        env_prefix="LINE_MONITOR_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    thresholds: ThresholdConfig = Field(default_factory=ThresholdConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    bottleneck: BottleneckConfig = Field(default_factory=BottleneckConfig)
    source: SourceConfig = Field(default_factory=SourceConfig)
    line: LineConfig = Field(default_factory=LineConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # 环境变量覆盖 YAML（YAML 通过 init 参数传入）
        return env_settings, init_settings, file_secret_settings


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    加载配置文件

    优先级：
    1. 参数指定的路径
    2. 环境变量 LINE_MONITOR_CONFIG_PATH
    3. 默认路径 config.yaml
    """
    if config_path is None:
        config_path = os.environ.get("LINE_MONITOR_CONFIG_PATH", "config.yaml")

    config_file = Path(config_path)

    if config_file.exists():
        with open(config_file, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
            if raw_config:
                # 布局文件路径相对于配置文件所在目录
                layout_file = (raw_config.get("line") or {}).get("layout_file")
                if layout_file and not Path(layout_file).is_absolute():
                    raw_config["line"]["layout_file"] = str(
                        (config_file.resolve().parent / layout_file).resolve()
                    )
                return AppConfig(**raw_config)

    # 配置文件不存在时使用默认配置
    return AppConfig()


# 全局配置实例（延迟加载）
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """获取全局配置实例（单例模式）"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config():
    """重置配置（主要用于测试）"""
    global _config
    _config = None

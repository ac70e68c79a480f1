"""
测试公共夹具
"""

import sys
from datetime import datetime
from pathlib import Path

import pytest

# 添加项目路径到 sys.path
sys.path.insert(0, str(Path(__file__).parent.parent))

from line_monitor import config as config_module
from line_monitor import monitor as monitor_module
from line_monitor.models import MetricName, MetricSample


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """每个测试使用默认配置，不读取工作目录下的 config.yaml"""
    monkeypatch.setenv("LINE_MONITOR_CONFIG_PATH", str(tmp_path / "missing.yaml"))
    config_module.reset_config()
    monitor_module.reset_monitor()
    yield
    config_module.reset_config()
    monitor_module.reset_monitor()


def make_sample(station_id, metric, value, fetched_at=None):
    return MetricSample(
        station_id=station_id,
        metric=MetricName(metric),
        value=value,
        fetched_at=fetched_at or datetime(2026, 1, 1, 8, 0, 0),
    )

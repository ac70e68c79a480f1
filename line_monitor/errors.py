"""
异常定义

核心内部的错误分类：
- ConfigurationError: 目标值/阈值配置错误、非有限输入
- FetchError: 远端指标 API 拉取失败（连接/协议/载荷）
- RegistrationError: 工位重复注册或注销未知工位
"""

from typing import Optional


class LineMonitorError(Exception):
    """所有核心异常的基类"""


class ConfigurationError(LineMonitorError, ValueError):
    """配置或输入值不合法"""


class FetchError(LineMonitorError):
    """
    单个工位本次拉取失败

    kind 取值：connection / protocol / payload
    """

    def __init__(self, station_id: Optional[int], kind: str, message: str):
        super().__init__(message)
        self.station_id = station_id
        self.kind = kind

    def __str__(self) -> str:
        return f"[{self.kind}] station {self.station_id}: {self.args[0]}"


class RegistrationError(LineMonitorError):
    """工位注册/注销冲突"""

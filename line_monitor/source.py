"""
远端指标源客户端

按工位拉取节拍/KPI 数据与目标值。
所有 HTTP 层面的失败都转换为 FetchError，不向调度器抛出其他异常。
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from .errors import FetchError
from .models import MetricName, MetricSample, Station

logger = logging.getLogger(__name__)

# 分组载荷中的键
PAYLOAD_GROUP_KEYS = ("cycles", "kpis")


def parse_metric_payload(station_id: int, payload: Any) -> Dict[MetricName, float]:
    """
    解析指标载荷

    接受分组格式 {"cycles": {...}, "kpis": {...}} 或扁平格式 {"oee": 80.0, ...}。
    未知字段忽略，值为 null 的字段视为缺失。

    Raises:
        FetchError: 载荷格式错误、数值无法解析或没有任何已知指标
    """
    if not isinstance(payload, dict):
        raise FetchError(station_id, "payload", f"expected object, got {type(payload).__name__}")

    flat: Dict[str, Any] = {}
    for key, value in payload.items():
        if key in PAYLOAD_GROUP_KEYS and isinstance(value, dict):
            flat.update(value)
        else:
            flat[key] = value

    values: Dict[MetricName, float] = {}
    for metric in MetricName:
        raw = flat.get(metric.value)
        if raw is None:
            continue
        if isinstance(raw, bool):
            raise FetchError(station_id, "payload", f"invalid value for {metric.value}: {raw!r}")
        try:
            values[metric] = float(raw)
        except (TypeError, ValueError):
            raise FetchError(
                station_id, "payload", f"invalid value for {metric.value}: {raw!r}"
            ) from None

    if not values:
        raise FetchError(station_id, "payload", "no metric values in response")
    return values


class MetricsSource:
    """
    远端指标 API

    GET {base_url}/lines/{line_id}/stations/{station_id}/metrics
    GET {base_url}/lines/{line_id}/stations/{station_id}/targets
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 2.0,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.token = token
        self._transport = transport

    def _station_url(self, station: Station, resource: str) -> str:
        return f"{self.base_url}/lines/{station.line_id}/stations/{station.station_id}/{resource}"

    async def _get_json(self, station: Station, resource: str) -> Any:
        url = self._station_url(station, resource)
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            raise FetchError(
                station.station_id, "protocol", f"HTTP {e.response.status_code} from {url}"
            ) from e
        except httpx.ProtocolError as e:
            raise FetchError(station.station_id, "protocol", str(e) or type(e).__name__) from e
        except httpx.DecodingError as e:
            raise FetchError(station.station_id, "payload", str(e) or type(e).__name__) from e
        except httpx.HTTPError as e:
            raise FetchError(station.station_id, "connection", str(e) or type(e).__name__) from e
        except ValueError as e:
            # response.json() 解析失败
            raise FetchError(station.station_id, "payload", f"invalid JSON: {e}") from e

    async def fetch_station(self, station: Station) -> List[MetricSample]:
        """
        拉取单个工位的最新指标

        Returns:
            本次拉取的样本列表（同一 fetched_at）

        Raises:
            FetchError: 拉取失败
        """
        payload = await self._get_json(station, "metrics")
        values = parse_metric_payload(station.station_id, payload)
        fetched_at = datetime.utcnow()

        logger.debug(f"Fetched {len(values)} metrics for station {station.station_id}")
        return [
            MetricSample(
                station_id=station.station_id,
                metric=metric,
                value=value,
                fetched_at=fetched_at,
            )
            for metric, value in values.items()
        ]

    async def fetch_targets(self, station: Station) -> Dict[MetricName, float]:
        """
        拉取工位目标值

        Raises:
            FetchError: 拉取失败
        """
        payload = await self._get_json(station, "targets")
        return parse_metric_payload(station.station_id, payload)

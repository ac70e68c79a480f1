"""
场景布局文件

每行格式：x;y;z;rx;ry;rz;stationId
文件名约定为 scene_content<line>.txt，产线号从文件名解析。
"""

import re
from pathlib import Path
from typing import List, Union

from .errors import ConfigurationError
from .models import StationPlacement

_LINE_FILE_RE = re.compile(r"scene_content(\d+)\.txt$")

_FIELDS = ("x", "y", "z", "rx", "ry", "rz")


def parse_layout(text: str) -> List[StationPlacement]:
    """
    解析布局文本

    不含分号的行（空行、注释）跳过；数字按不区分区域的格式解析（小数点为 '.'）。

    Raises:
        ConfigurationError: 字段数量不足或数值无法解析
    """
    placements = []
    for number, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if ";" not in line:
            continue

        parts = [p.strip() for p in line.split(";")]
        if len(parts) < 7:
            raise ConfigurationError(f"Layout line {number}: expected 7 fields, got {len(parts)}")

        try:
            coords = {name: float(value) for name, value in zip(_FIELDS, parts[:6])}
            station_id = int(parts[6])
        except ValueError as e:
            raise ConfigurationError(f"Layout line {number}: {e}") from e

        placements.append(StationPlacement(station_id=station_id, **coords))
    return placements


def load_layout(path: Union[str, Path]) -> List[StationPlacement]:
    with open(path, "r", encoding="utf-8") as f:
        return parse_layout(f.read())


def line_id_from_layout_path(path: Union[str, Path]) -> int:
    """scene_content3.txt -> 3"""
    match = _LINE_FILE_RE.search(Path(path).name)
    if not match:
        raise ConfigurationError(f"Cannot derive line id from layout file name: {path}")
    return int(match.group(1))

"""打印密度（DPI）元数据写入。

只改写容器中的元数据字段，像素数据原样保留：
PNG 替换或插入 pHYs 块，JPEG 修改 JFIF APP0 段中的密度字段。
"""

from __future__ import annotations

import logging
import struct
import zlib
from typing import Iterator, NamedTuple, Optional

from ultraart.core.exceptions import MetadataUnsupported

LOGGER = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
JPEG_SOI = b"\xff\xd8"
INCH_IN_METRES = 0.0254

_PHYS_UNIT_METRE = 1
_JFIF_UNIT_INCH = 1
_JFIF_UNIT_CM = 2


class _Chunk(NamedTuple):
    kind: bytes
    start: int
    end: int
    data_start: int
    length: int


def embed_density(data: bytes, dpi: int) -> bytes:
    """返回写入目标 DPI 后的字节；容器不支持时原样返回并记录警告。"""

    try:
        return write_density(data, dpi)
    except MetadataUnsupported as exc:
        LOGGER.warning("未写入 DPI 元数据：%s", exc)
        return data


def write_density(data: bytes, dpi: int) -> bytes:
    """写入目标 DPI；容器没有密度字段时抛出 MetadataUnsupported。"""

    if dpi <= 0:
        raise ValueError(f"DPI 必须大于 0: {dpi}")
    if data.startswith(PNG_SIGNATURE):
        return _write_png_phys(data, dpi)
    if data.startswith(JPEG_SOI):
        return _write_jfif_density(data, dpi)
    raise MetadataUnsupported("输出格式没有密度元数据字段")


def read_density(data: bytes) -> Optional[int]:
    """读取已写入的 DPI（取整），没有密度信息时返回 None。"""

    if data.startswith(PNG_SIGNATURE):
        try:
            for chunk in _iter_png_chunks(data):
                if chunk.kind == b"pHYs" and chunk.length == 9:
                    ppm_x, _ppm_y, unit = struct.unpack(">IIB", data[chunk.data_start : chunk.data_start + 9])
                    if unit != _PHYS_UNIT_METRE:
                        return None
                    return int(round(ppm_x * INCH_IN_METRES))
                if chunk.kind == b"IDAT":
                    break
        except MetadataUnsupported:
            return None
        return None

    if data.startswith(JPEG_SOI):
        offset = _find_jfif_density(data)
        if offset is None:
            return None
        unit, x_density, _y_density = struct.unpack(">BHH", data[offset : offset + 5])
        if unit == _JFIF_UNIT_INCH:
            return x_density
        if unit == _JFIF_UNIT_CM:
            return int(round(x_density * 2.54))
        return None

    return None


def _write_png_phys(data: bytes, dpi: int) -> bytes:
    ppm = int(dpi / INCH_IN_METRES + 0.5)
    payload = struct.pack(">IIB", ppm, ppm, _PHYS_UNIT_METRE)
    phys = struct.pack(">I", len(payload)) + b"pHYs" + payload
    phys += struct.pack(">I", zlib.crc32(b"pHYs" + payload) & 0xFFFFFFFF)

    parts: list[bytes] = [PNG_SIGNATURE]
    inserted = False
    for chunk in _iter_png_chunks(data):
        if chunk.kind == b"pHYs":
            continue
        parts.append(data[chunk.start : chunk.end])
        if chunk.kind == b"IHDR":
            parts.append(phys)
            inserted = True
    if not inserted:
        raise MetadataUnsupported("PNG 缺少 IHDR 块")
    return b"".join(parts)


def _iter_png_chunks(data: bytes) -> Iterator[_Chunk]:
    offset = len(PNG_SIGNATURE)
    total = len(data)
    while offset < total:
        if offset + 8 > total:
            raise MetadataUnsupported("PNG 数据被截断")
        (length,) = struct.unpack(">I", data[offset : offset + 4])
        kind = data[offset + 4 : offset + 8]
        end = offset + 12 + length
        if end > total:
            raise MetadataUnsupported("PNG 数据被截断")
        yield _Chunk(kind=kind, start=offset, end=end, data_start=offset + 8, length=length)
        if kind == b"IEND":
            return
        offset = end


def _write_jfif_density(data: bytes, dpi: int) -> bytes:
    if dpi > 0xFFFF:
        raise MetadataUnsupported(f"JFIF 密度字段无法表示 {dpi}")
    offset = _find_jfif_density(data)
    if offset is None:
        raise MetadataUnsupported("JPEG 缺少 JFIF APP0 段")
    patched = bytearray(data)
    patched[offset : offset + 5] = struct.pack(">BHH", _JFIF_UNIT_INCH, dpi, dpi)
    return bytes(patched)


def _find_jfif_density(data: bytes) -> Optional[int]:
    """返回 JFIF APP0 段中密度单位字段的偏移量。"""

    offset = 2
    total = len(data)
    while offset + 4 <= total:
        if data[offset] != 0xFF:
            return None
        marker = data[offset + 1]
        if marker == 0xFF:
            offset += 1
            continue
        # SOS 之后是熵编码数据，不再有 APPn
        if marker == 0xDA:
            return None
        (length,) = struct.unpack(">H", data[offset + 2 : offset + 4])
        segment = data[offset + 4 : offset + 2 + length]
        # 标识(5) + 版本(2) + 单位(1) + X/Y 密度(4)
        if marker == 0xE0 and segment[:5] == b"JFIF\x00" and len(segment) >= 12:
            return offset + 4 + 7
        offset += 2 + length
    return None

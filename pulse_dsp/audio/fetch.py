# pulse_dsp/audio/fetch.py
from __future__ import annotations

import asyncio
import io
import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import unquote, urlparse

import aiohttp
import numpy as np
import soundfile as sf

from ..errors import DecodeFailed, SourceUnreachable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeResult:
    url: str
    status: int
    ok: bool
    content_type: Optional[str] = None
    content_length: Optional[int] = None


def is_remote(url: str) -> bool:
    return urlparse(url).scheme in ("http", "https")


def local_path(url: str) -> str:
    """file:///x/y.mp3 -> /x/y.mp3, обычный путь возвращается как есть."""
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return unquote(parsed.path)
    return url


async def probe(url: str, timeout: float = 5.0) -> ProbeResult:
    """
    Проверка доступности ресурса (отдельно от decode pipeline).
    SourceUnreachable если ресурс не найден / сеть недоступна / status >= 400.
    """
    if is_remote(url):
        try:
            client_timeout = aiohttp.ClientTimeout(total=float(timeout))
            async with aiohttp.ClientSession(timeout=client_timeout) as session:
                async with session.get(url) as resp:
                    length = resp.headers.get("Content-Length")
                    result = ProbeResult(
                        url=url,
                        status=int(resp.status),
                        ok=resp.status < 400,
                        content_type=resp.headers.get("Content-Type"),
                        content_length=int(length) if length and length.isdigit() else None,
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SourceUnreachable(f"Could not fetch {url}: {e!r}") from e
    else:
        path = local_path(url)
        if not os.path.isfile(path):
            raise SourceUnreachable(f"No such audio file: {path}")
        result = ProbeResult(url=url, status=200, ok=True, content_length=os.path.getsize(path))

    logger.info(
        "Audio probe %s -> status=%s ok=%s type=%s length=%s",
        url, result.status, result.ok, result.content_type, result.content_length,
    )
    if not result.ok:
        raise SourceUnreachable(f"{url} answered HTTP {result.status}")
    return result


def _read_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


async def fetch_bytes(url: str, timeout: float = 30.0) -> bytes:
    if is_remote(url):
        try:
            client_timeout = aiohttp.ClientTimeout(total=float(timeout))
            async with aiohttp.ClientSession(timeout=client_timeout) as session:
                async with session.get(url) as resp:
                    resp.raise_for_status()
                    return await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SourceUnreachable(f"Could not fetch {url}: {e!r}") from e

    # Disk I/O может блокировать event loop, поэтому читаем в thread-пуле.
    try:
        return await asyncio.to_thread(_read_file, local_path(url))
    except OSError as e:
        raise SourceUnreachable(f"Could not read {url}: {e}") from e


def decode(raw: bytes) -> Tuple[np.ndarray, int]:
    """bytes -> (frames, channels) float32 + samplerate"""
    try:
        data, sr = sf.read(io.BytesIO(raw), dtype="float32", always_2d=True)
    except Exception as e:
        raise DecodeFailed(f"not a decodable audio stream: {e}") from e
    if data.size == 0 or sr <= 0:
        raise DecodeFailed("decoded stream is empty")
    return data, int(sr)


def resample(data: np.ndarray, src_sr: int, dst_sr: int) -> np.ndarray:
    """Линейная интерполяция по каналам. Для визуализации этого достаточно."""
    if int(src_sr) == int(dst_sr) or data.shape[0] == 0:
        return data
    n_src = int(data.shape[0])
    n_dst = max(1, int(round(n_src * float(dst_sr) / float(src_sr))))
    t_src = np.arange(n_src, dtype=np.float64) / float(src_sr)
    t_dst = np.arange(n_dst, dtype=np.float64) / float(dst_sr)
    out = np.empty((n_dst, data.shape[1]), dtype=np.float32)
    for c in range(data.shape[1]):
        out[:, c] = np.interp(t_dst, t_src, data[:, c])
    return out


def to_channels(data: np.ndarray, channels: int) -> np.ndarray:
    ch = int(channels)
    if data.shape[1] == ch:
        return data
    if data.shape[1] == 1:
        return np.repeat(data, ch, axis=1)
    if data.shape[1] > ch:
        return np.ascontiguousarray(data[:, :ch])
    pad = np.zeros((data.shape[0], ch), dtype=np.float32)
    pad[:, : data.shape[1]] = data
    return pad

"""Read upstream bodies honoring Content-Encoding, with pooled buffers.

httpx would transparently decode gzip/br, but we read the raw stream and
decode explicitly so that truncated or corrupt payloads surface as
``DecodeError`` instead of partial text, and so buffers can be reused.
"""

from __future__ import annotations

import contextlib
import logging
import threading
import zlib
from typing import Callable, Iterator, List, Optional

import brotli
import httpx

from .errors import DecodeError, TransportError

logger = logging.getLogger(__name__)

SMALL_BUFFER_LIMIT = 1024
_MAX_POOLED = 32


class BufferPool:
    """Free list of reusable ``bytearray`` buffers."""

    def __init__(self, max_size: int = _MAX_POOLED):
        self._lock = threading.Lock()
        self._free: List[bytearray] = []
        self._max_size = max_size

    def acquire(self) -> bytearray:
        with self._lock:
            if self._free:
                return self._free.pop()
        return bytearray()

    def release(self, buf: bytearray) -> None:
        # A released buffer must hold no bytes from its previous use.
        buf.clear()
        with self._lock:
            if len(self._free) < self._max_size:
                self._free.append(buf)

    def __len__(self) -> int:
        with self._lock:
            return len(self._free)


class TieredBufferPool:
    """Two pools split by expected payload size."""

    def __init__(self, small_limit: int = SMALL_BUFFER_LIMIT):
        self.small_limit = small_limit
        self.small = BufferPool()
        self.large = BufferPool()

    def _tier(self, size: int) -> BufferPool:
        return self.small if size < self.small_limit else self.large

    def acquire(self, size_hint: int = 0) -> bytearray:
        return self._tier(size_hint).acquire()

    def release(self, buf: bytearray) -> None:
        # Route by what the buffer grew to, not the original hint.
        self._tier(len(buf)).release(buf)

    @contextlib.contextmanager
    def lease(self, size_hint: int = 0) -> Iterator[bytearray]:
        buf = self.acquire(size_hint)
        try:
            yield buf
        finally:
            self.release(buf)


default_pool = TieredBufferPool()


class _GzipDecoder:
    def __init__(self):
        self._obj = zlib.decompressobj(zlib.MAX_WBITS | 16)

    def decode(self, data: bytes) -> bytes:
        try:
            return self._obj.decompress(data)
        except zlib.error as exc:
            raise DecodeError(f"Error decompressing gzip response: {exc}") from exc

    def flush(self) -> bytes:
        try:
            tail = self._obj.flush()
        except zlib.error as exc:
            raise DecodeError(f"Error decompressing gzip response: {exc}") from exc
        if not self._obj.eof:
            raise DecodeError("Error decompressing gzip response: truncated stream")
        return tail


class _BrotliDecoder:
    def __init__(self):
        self._obj = brotli.Decompressor()

    def decode(self, data: bytes) -> bytes:
        try:
            return self._obj.process(data)
        except brotli.error as exc:
            raise DecodeError(f"Error decompressing br response: {exc}") from exc

    def flush(self) -> bytes:
        if not self._obj.is_finished():
            raise DecodeError("Error decompressing br response: truncated stream")
        return b""


class _IdentityDecoder:
    def decode(self, data: bytes) -> bytes:
        return data

    def flush(self) -> bytes:
        return b""


_DECODERS: dict[str, Callable[[], object]] = {
    "gzip": _GzipDecoder,
    "x-gzip": _GzipDecoder,
    "br": _BrotliDecoder,
}


def decoder_for_encoding(encoding: Optional[str]):
    """Return a fresh decoder; unknown or absent encodings pass through."""

    key = (encoding or "").strip().lower()
    factory = _DECODERS.get(key)
    if factory is None:
        if key and key != "identity":
            logger.debug("Unrecognised Content-Encoding %r; passing through", key)
        return _IdentityDecoder()
    return factory()


def decoder_for_response(response: httpx.Response):
    return decoder_for_encoding(response.headers.get("content-encoding"))


def _size_hint(response: httpx.Response) -> int:
    try:
        return int(response.headers.get("content-length", "0"))
    except ValueError:
        return 0


async def read_body(
    response: httpx.Response, pool: Optional[TieredBufferPool] = None
) -> bytes:
    """Read and decode the full body of a streamed upstream response."""

    pool = pool or default_pool
    decoder = decoder_for_response(response)
    with pool.lease(_size_hint(response)) as buf:
        try:
            async for chunk in response.aiter_raw():
                buf += decoder.decode(chunk)
        except httpx.HTTPError as exc:
            raise TransportError(f"Error reading response body: {exc}") from exc
        buf += decoder.flush()
        return bytes(buf)

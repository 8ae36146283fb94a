"""原始字节流 → JSON 帧。

不同 Provider 的流式响应有两种分帧方式：

- SSE：若干 ``data:`` 行组成一帧，帧之间以空行分隔，``data: [DONE]`` 表示结束。
- NDJSON：每行一个 JSON 对象。

分帧方式在第一次拿到非空数据时探测一次，之后在整个流中保持不变。
FrameNormalizer 持有未完成片段的状态，每轮对话（每个 Provider 尝试）新建一个实例。
"""

from __future__ import annotations

import codecs
import json
from enum import Enum
from typing import Any, List, Optional

from chat_core.domain.exceptions import ParseError
from chat_core.infrastructure.logging.logger import logger


SSE_DONE = "[DONE]"


class FramingMode(str, Enum):
    SSE = "sse"
    NDJSON = "ndjson"


def detect_framing(buffer: str) -> Optional[FramingMode]:
    """根据首段数据判断分帧方式；数据全为空白时返回 None。"""

    lead = buffer.lstrip()
    if not lead:
        return None
    if lead[0] in "{[":
        return FramingMode.NDJSON
    return FramingMode.SSE


def parse_payload(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(code="FRAME_PARSE_ERROR", message=str(e), payload=text[:200])


class FrameNormalizer:
    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._mode: Optional[FramingMode] = None
        self._done = False

    @property
    def mode(self) -> Optional[FramingMode]:
        return self._mode

    @property
    def done(self) -> bool:
        """SSE 流已收到结束帧。"""
        return self._done

    def feed(self, chunk: bytes) -> List[Any]:
        if self._done:
            return []
        text = self._decoder.decode(chunk)
        if not text:
            return []
        self._buffer = (self._buffer + text).replace("\r\n", "\n")
        if self._mode is None:
            self._mode = detect_framing(self._buffer)
            if self._mode is None:
                return []
        return self._drain(final=False)

    def flush(self) -> List[Any]:
        """流结束时调用，解析最后一个没有结束分隔符的片段。"""

        if self._done:
            return []
        tail = self._decoder.decode(b"", final=True)
        if tail:
            self._buffer = (self._buffer + tail).replace("\r\n", "\n")
        if self._mode is None:
            self._mode = detect_framing(self._buffer)
            if self._mode is None:
                return []
        return self._drain(final=True)

    def _drain(self, final: bool) -> List[Any]:
        if self._mode is FramingMode.SSE:
            return self._drain_sse(final)
        return self._drain_ndjson(final)

    def _drain_sse(self, final: bool) -> List[Any]:
        parts = self._buffer.split("\n\n")
        if final:
            self._buffer = ""
        else:
            self._buffer = parts.pop()
        frames: List[Any] = []
        for raw in parts:
            data_lines = []
            for line in raw.split("\n"):
                if not line.startswith("data:"):
                    continue
                value = line[5:]
                if value.startswith(" "):
                    value = value[1:]
                data_lines.append(value)
            if not data_lines:
                continue
            payload = "\n".join(data_lines).strip()
            if payload == SSE_DONE:
                self._done = True
                self._buffer = ""
                break
            if not payload:
                continue
            self._append_parsed(frames, payload)
        return frames

    def _drain_ndjson(self, final: bool) -> List[Any]:
        lines = self._buffer.split("\n")
        if final:
            self._buffer = ""
        else:
            self._buffer = lines.pop()
        frames: List[Any] = []
        for line in lines:
            stripped = line.strip()
            if not stripped or stripped[0] not in "{[":
                continue
            self._append_parsed(frames, stripped)
        return frames

    @staticmethod
    def _append_parsed(frames: List[Any], payload: str) -> None:
        try:
            frames.append(parse_payload(payload))
        except ParseError as e:
            logger.debug("Dropped malformed frame", extra={"extra": {"error": e.message}})

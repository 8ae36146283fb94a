"""解析后的帧 → 去重的文本增量。

不同 Provider 的 JSON 结构各不相同：有的每帧只发一个 token，有的会周期性
重发完整答案。TokenReconciler 把两者统一为“只追加、不重复”的增量序列，
写入 DeltaBuffer 供打字渲染器读取。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, Tuple

from chat_core.streaming.segmenter import GraphemeSegmenter, TextSegmenter


class PayloadKind(str, Enum):
    INCREMENTAL = "incremental"
    FULL = "full"


@dataclass(frozen=True)
class Payload:
    text: str
    kind: PayloadKind


@dataclass
class DeltaBuffer:
    """单个 Provider 尝试的增量缓冲区。

    aggregate_text 只增不减；graphemes 每次追加后由完整聚合文本重新切分，
    避免组合字符序列跨越增量边界时被拆开。
    """

    segmenter: TextSegmenter = field(default_factory=GraphemeSegmenter)
    aggregate_text: str = ""
    graphemes: List[str] = field(default_factory=list)
    closed: bool = False

    def append(self, delta: str) -> None:
        if not delta:
            return
        self.aggregate_text += delta
        self.graphemes = self.segmenter.segment(self.aggregate_text)

    def close(self) -> None:
        self.closed = True

    @classmethod
    def completed(cls, text: str, segmenter: Optional[TextSegmenter] = None) -> "DeltaBuffer":
        """用一段已完成的文本构造一个已关闭的缓冲区（单次生成的 Provider 使用）。"""

        buf = cls(segmenter=segmenter or GraphemeSegmenter())
        buf.append(text)
        buf.close()
        return buf


# ---- 字段提取 ----


def _get(obj: Any, *path: Any) -> Any:
    cur = obj
    for key in path:
        if isinstance(key, int):
            if not isinstance(cur, list) or len(cur) <= key:
                return None
            cur = cur[key]
        else:
            if not isinstance(cur, dict):
                return None
            cur = cur.get(key)
    return cur


def _str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _join_parts(parts: Any) -> Optional[str]:
    if not isinstance(parts, list):
        return None
    texts = [p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
    if not texts:
        return None
    return "".join(texts)


def _message_content(obj: Any) -> Optional[str]:
    content = _get(obj, "message", "content")
    if isinstance(content, str):
        return content
    return _join_parts(content)


Extractor = Callable[[Any], Optional[str]]

# 按优先级依次尝试，先命中者生效
INCREMENTAL_EXTRACTORS: Sequence[Extractor] = (
    lambda o: _str(_get(o, "choices", 0, "delta", "content")),
    lambda o: _str(_get(o, "text")),
    lambda o: _str(_get(o, "token")),
    lambda o: _str(_get(o, "delta")),
    lambda o: _str(_get(o, "delta", "text")),
    lambda o: _join_parts(_get(o, "delta", "content")),
)

FULL_EXTRACTORS: Sequence[Extractor] = (
    lambda o: _str(_get(o, "response", "text")),
    _message_content,
    lambda o: _join_parts(_get(o, "content")),
    lambda o: _str(_get(o, "choices", 0, "message", "content")),
)

EXTRACTION_ORDER: Sequence[Tuple[PayloadKind, Sequence[Extractor]]] = (
    (PayloadKind.INCREMENTAL, INCREMENTAL_EXTRACTORS),
    (PayloadKind.FULL, FULL_EXTRACTORS),
)


def extract_payload(frame: Any) -> Optional[Payload]:
    """从一帧中提取文本及其类型，无法识别时返回 None。"""

    for kind, extractors in EXTRACTION_ORDER:
        for extractor in extractors:
            text = extractor(frame)
            if text is not None:
                return Payload(text=text, kind=kind)
    return None


def common_prefix_length(a: str, b: str) -> int:
    limit = min(len(a), len(b))
    i = 0
    while i < limit and a[i] == b[i]:
        i += 1
    return i


class TokenReconciler:
    def __init__(self, buffer: DeltaBuffer):
        self.buffer = buffer

    def reconcile(self, frame: Any) -> str:
        """处理一帧并返回需要追加的增量（可能为空字符串）。"""

        payload = extract_payload(frame)
        if payload is None or not payload.text:
            return ""
        current = self.buffer.aggregate_text
        if payload.kind is PayloadKind.INCREMENTAL or not current:
            delta = payload.text
        else:
            # 周期性重发完整答案：只取与当前聚合文本公共前缀之后的部分
            delta = payload.text[common_prefix_length(current, payload.text):]
        self.buffer.append(delta)
        return delta

"""流式管线：分帧、增量对齐与文本切分。"""

from chat_core.streaming.frames import FrameNormalizer, FramingMode
from chat_core.streaming.reconciler import DeltaBuffer, Payload, PayloadKind, TokenReconciler, extract_payload
from chat_core.streaming.segmenter import CodepointSegmenter, GraphemeSegmenter, TextSegmenter, create_segmenter

__all__ = [
    "CodepointSegmenter",
    "DeltaBuffer",
    "FrameNormalizer",
    "FramingMode",
    "GraphemeSegmenter",
    "Payload",
    "PayloadKind",
    "TextSegmenter",
    "TokenReconciler",
    "create_segmenter",
    "extract_payload",
]

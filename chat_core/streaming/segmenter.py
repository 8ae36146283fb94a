"""文本切分能力。

打字渲染器按“用户感知的一个字符”逐步显示文本，因此需要把聚合文本
切分为扩展字素簇（grapheme cluster），保证 emoji 修饰符、组合重音等
多码点序列不会在两次 tick 之间被拆开。

- GraphemeSegmenter: 基于 regex 库的 \\X，按 Unicode 扩展字素簇切分。
- CodepointSegmenter: 确定性的逐码点回退实现，对组合字符保真度较低。
"""

from typing import List, Protocol

import regex

_GRAPHEME_RE = regex.compile(r"\X")


class TextSegmenter(Protocol):
    name: str

    def segment(self, text: str) -> List[str]:
        ...


class GraphemeSegmenter:
    name = "grapheme"

    def segment(self, text: str) -> List[str]:
        if not text:
            return []
        return _GRAPHEME_RE.findall(text)


class CodepointSegmenter:
    """逐码点切分。组合重音会与其基字符分开显示。"""

    name = "codepoint"

    def segment(self, text: str) -> List[str]:
        return list(text or "")


def create_segmenter(name: str = "grapheme") -> TextSegmenter:
    if name == "codepoint":
        return CodepointSegmenter()
    return GraphemeSegmenter()

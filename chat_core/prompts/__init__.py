"""Grounding 上下文构建工具。

从 prompts/knowledge.yaml 读取平台知识库，按用户输入挑选相关段落，
拼成一条 system 消息放在请求的最前面，帮助模型给出有依据的回答。
"""

import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


PROMPTS_DIR = Path(__file__).resolve().parent

_ARABIC_RE = re.compile(r"[\u0600-\u06FF]")


@lru_cache(maxsize=1)
def load_knowledge(path: Optional[str] = None) -> Dict[str, Any]:
    fname = Path(path) if path else PROMPTS_DIR / "knowledge.yaml"
    data = yaml.safe_load(fname.read_text(encoding="utf-8")) or {}
    return data if isinstance(data, dict) else {}


def detect_language(text: str) -> str:
    """含阿拉伯字母时为 ar，否则为 en。"""

    return "ar" if _ARABIC_RE.search(text or "") else "en"


def build_grounding_context(query: str, locale: Optional[str] = None) -> str:
    """根据用户输入构建 system 消息文本。

    标签出现在输入中的段落会被选中；都不匹配时使用 defaults 中列出的段落。
    """

    kb = load_knowledge()
    lang = locale or detect_language(query)
    q = (query or "").lower()
    sections = kb.get("sections") or []
    matched = [s for s in sections if any(str(tag).lower() in q for tag in s.get("tags") or [])]
    if not matched:
        defaults = set(kb.get("defaults") or [])
        matched = [s for s in sections if s.get("id") in defaults]
    lines = [s.get(lang) or s.get("en") or "" for s in matched]
    directive = (kb.get("directive") or {}).get(lang) or ""
    return f"{directive}\n\nKnowledge:\n- " + "\n- ".join(lines)

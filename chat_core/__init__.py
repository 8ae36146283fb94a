"""Chat Core 顶层包。

该包提供会话式 AI 功能的流式响应管线，
包括配置加载、领域模型、Provider 适配、分帧与增量对齐、
Provider 回退编排、打字效果渲染与会话持久化等能力。
"""

from chat_core.api.service import ChatService
from chat_core.infrastructure.storage import AuthPrincipal, create_store

__all__ = ["AuthPrincipal", "ChatService", "create_store"]

"""统一的对话与结果数据模型。

本模块定义了流式管线在不同 Provider 之间共享的标准数据结构：

- ChatMessage: 一条发给 Provider 的对话消息（system/user/assistant）。
- ChatRequest: 发给底层 Provider 的完整请求。
- ProviderAttempt: 某一轮对话中对单个 Provider 的一次尝试记录。
- ExchangeResult: FallbackOrchestrator 成功后的统一结果。

所有 Provider 适配器都只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional


# 消息角色类型（与 OpenAI 兼容接口的 role 字段对应）
Role = Literal["system", "user", "assistant"]


@dataclass
class ChatMessage:
    """一条对话消息。

    - role: 消息角色，如 system/user/assistant。
    - content: 纯文本内容。
    - meta: 附加元数据，不直接发给 Provider，主要用于日志。
    """

    role: Role
    content: str
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    服务层把 grounding system 消息与会话记录拼成 ChatRequest，
    再交给 FallbackOrchestrator 依次尝试各个 Provider。
    """

    messages: List[ChatMessage]
    conversation_id: Optional[str] = None
    language: Optional[str] = None

    def payload_messages(self) -> List[Dict[str, str]]:
        return [m.to_payload() for m in self.messages]


class AttemptOutcome(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    SOFT_FAILURE = "soft-failure"


@dataclass(frozen=True)
class ProviderAttempt:
    """对单个 Provider 的一次尝试，一旦记录即不可变。"""

    provider_id: str
    outcome: AttemptOutcome
    error: Optional[str] = None


@dataclass
class ExchangeResult:
    """一轮对话成功后的结果。

    - text: 最终聚合文本。
    - provider: 产出该文本的 Provider 名称。
    - message_id: 渲染器使用的助手消息 ID。
    - attempts: 按优先级顺序记录的全部尝试。
    """

    text: str
    provider: str
    message_id: str
    attempts: List[ProviderAttempt]

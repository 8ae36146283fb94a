from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Protocol

from .models import Role


StorageMode = Literal["local", "remote"]

TITLE_MAX_CHARS = 60


@dataclass
class MessageRecord:
    id: str
    conversation_id: str
    role: Role
    content: str
    position: int
    created_at: datetime
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Conversation:
    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    storage_mode: StorageMode
    messages: List[MessageRecord] = field(default_factory=list)


def derive_title(text: str, default: str = "New Chat", limit: int = TITLE_MAX_CHARS) -> str:
    """取首条用户消息的前若干字符作为会话标题。"""

    title = (text or "").strip()[:limit]
    return title or default


class ConversationStore(Protocol):
    """会话存储协议，本地与远端两种后端都实现它。"""

    storage_mode: StorageMode

    async def create_conversation(self, title: str) -> Conversation:
        ...

    async def add_message(self, conversation_id: str, message: MessageRecord) -> None:
        ...

    async def list_conversations(self, limit: Optional[int] = None) -> List[Conversation]:
        ...

    async def list_messages(self, conversation_id: str) -> List[MessageRecord]:
        ...

    async def update_title(self, conversation_id: str, title: str) -> None:
        ...

    async def delete_conversation(self, conversation_id: str) -> None:
        ...

    async def delete_all(self) -> None:
        ...

"""会话存储后端：本地 JSON 与远端 REST。"""

from typing import Optional

from chat_core.config.settings import settings
from chat_core.domain.conversation import ConversationStore
from chat_core.infrastructure.storage.json_store import LocalConversationStore
from chat_core.infrastructure.storage.remote_store import AuthPrincipal, PrincipalSource, RemoteConversationStore


def create_store(cfg=None, principal: PrincipalSource = None) -> ConversationStore:
    """根据 storage_mode 创建存储后端。"""

    cfg = cfg or settings
    if getattr(cfg, "storage_mode", "local") == "remote":
        return RemoteConversationStore(principal=principal, cfg=cfg)
    return LocalConversationStore(root=cfg.storage_root, key=cfg.local_storage_key)


__all__ = [
    "AuthPrincipal",
    "LocalConversationStore",
    "RemoteConversationStore",
    "create_store",
]

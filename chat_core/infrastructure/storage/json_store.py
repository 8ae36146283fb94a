"""本地会话存储。

所有会话保存在同一个键对应的 JSON 文件中（一个数组），
每次操作都是同步的“读-改-写”，写入时先写临时文件再原子替换。
"""

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.conversation import Conversation, ConversationStore, MessageRecord
from chat_core.domain.exceptions import BusinessError, PersistenceError


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_dt(value: Any) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _key_to_filename(key: str) -> str:
    return "".join(c if c.isalnum() or c in "-_." else "_" for c in key) + ".json"


class LocalConversationStore(ConversationStore):
    storage_mode = "local"

    def __init__(self, root: str | Path | None = None, key: Optional[str] = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._key = key or settings.local_storage_key
        self._path = self._root / _key_to_filename(self._key)

    @property
    def path(self) -> Path:
        return self._path

    async def create_conversation(self, title: str) -> Conversation:
        now = datetime.now(timezone.utc)
        conv = Conversation(
            id=str(uuid4()),
            title=title,
            created_at=now,
            updated_at=now,
            storage_mode="local",
        )
        items = self._read_all()
        items.insert(0, self._conv_to_dict(conv))
        self._write_all(items)
        return conv

    async def add_message(self, conversation_id: str, message: MessageRecord) -> None:
        items = self._read_all()
        entry = self._find(items, conversation_id)
        entry.setdefault("messages", []).append(self._message_to_dict(message))
        entry["updated_at"] = _iso(datetime.now(timezone.utc))
        self._write_all(items)

    async def list_conversations(self, limit: Optional[int] = None) -> List[Conversation]:
        convs = [self._to_conversation(d) for d in self._read_all()]
        convs.sort(key=lambda c: c.updated_at, reverse=True)
        if limit is not None:
            convs = convs[:limit]
        return convs

    async def list_messages(self, conversation_id: str) -> List[MessageRecord]:
        entry = self._find(self._read_all(), conversation_id)
        return self._to_conversation(entry).messages

    async def update_title(self, conversation_id: str, title: str) -> None:
        """更新会话标题。"""
        items = self._read_all()
        entry = self._find(items, conversation_id)
        entry["title"] = title
        entry["updated_at"] = _iso(datetime.now(timezone.utc))
        self._write_all(items)

    async def delete_conversation(self, conversation_id: str) -> None:
        items = self._read_all()
        remaining = [d for d in items if d.get("id") != conversation_id]
        if len(remaining) == len(items):
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404)
        self._write_all(remaining)

    async def delete_all(self) -> None:
        self._write_all([])

    # ---- 辅助方法 ----

    def _read_all(self) -> List[Dict[str, Any]]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(code="STORE_READ_ERROR", message=str(e))
        if not isinstance(data, list):
            return []
        return [d for d in data if isinstance(d, dict) and d.get("id")]

    def _write_all(self, items: List[Dict[str, Any]]) -> None:
        tmp_path = self._root / f"{self._path.stem}.{uuid4().hex}.json.tmp"
        try:
            tmp_path.write_text(json.dumps(items, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as e:
            raise PersistenceError(code="STORE_WRITE_ERROR", message=str(e))

    @staticmethod
    def _find(items: List[Dict[str, Any]], conversation_id: str) -> Dict[str, Any]:
        for d in items:
            if d.get("id") == conversation_id:
                return d
        raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404)

    def _conv_to_dict(self, conv: Conversation) -> Dict[str, Any]:
        return {
            "id": conv.id,
            "title": conv.title,
            "messages": [self._message_to_dict(m) for m in conv.messages],
            "created_at": _iso(conv.created_at),
            "updated_at": _iso(conv.updated_at),
        }

    @staticmethod
    def _message_to_dict(message: MessageRecord) -> Dict[str, Any]:
        return {
            "id": message.id,
            "role": message.role,
            "content": message.content,
            "position": message.position,
            "created_at": _iso(message.created_at),
            "meta": message.meta,
        }

    def _to_conversation(self, data: Dict[str, Any]) -> Conversation:
        cid = data["id"]
        raw_messages = data.get("messages") or []
        messages = [self._to_message(cid, i, m) for i, m in enumerate(raw_messages) if isinstance(m, dict)]
        messages.sort(key=lambda m: m.position)
        return Conversation(
            id=cid,
            title=data.get("title") or "",
            created_at=_parse_dt(data.get("created_at")),
            updated_at=_parse_dt(data.get("updated_at")),
            storage_mode="local",
            messages=messages,
        )

    @staticmethod
    def _to_message(conversation_id: str, index: int, data: Dict[str, Any]) -> MessageRecord:
        return MessageRecord(
            id=str(data.get("id") or f"m-{index}"),
            conversation_id=conversation_id,
            role=data.get("role") or "user",
            content=data.get("content") or "",
            position=int(data.get("position", index)),
            created_at=_parse_dt(data.get("created_at")),
            meta=data.get("meta") or {},
        )

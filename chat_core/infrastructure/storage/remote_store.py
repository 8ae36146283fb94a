"""远端会话存储（账户绑定）。

通过存储服务的 REST 接口（PostgREST 风格）读写两张表：
- conversations(id, user_id, title, created_at, updated_at)
- messages(id, conversation_id, user_id, role, content)，按 id 升序即为消息顺序

所有请求都需要已登录的用户身份（AuthPrincipal）。未登录时写操作被跳过、
读操作返回空列表，对话退化为仅保存在内存中的临时会话。
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union
from uuid import uuid4

import httpx

from chat_core.config.settings import settings
from chat_core.domain.conversation import Conversation, ConversationStore, MessageRecord
from chat_core.domain.exceptions import PersistenceError, ValidationError
from chat_core.infrastructure.logging.logger import logger


@dataclass
class AuthPrincipal:
    """已登录用户：用户 ID 与访问令牌。"""

    user_id: str
    access_token: str


PrincipalSource = Union[Optional[AuthPrincipal], Callable[[], Optional[AuthPrincipal]]]


def _parse_dt(value: Any) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class RemoteConversationStore(ConversationStore):
    storage_mode = "remote"

    def __init__(
        self,
        principal: PrincipalSource = None,
        cfg=settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = cfg
        self._principal = principal
        self._transport = transport
        base = getattr(cfg, "remote_url", None)
        if not base:
            raise ValidationError(code="MISSING_REMOTE_URL", message="REMOTE_URL not set")
        self._rest = f"{base.rstrip('/')}/rest/v1"

    @property
    def principal(self) -> Optional[AuthPrincipal]:
        if callable(self._principal):
            return self._principal()
        return self._principal

    async def create_conversation(self, title: str) -> Conversation:
        now = datetime.now(timezone.utc)
        principal = self.principal
        if principal is None:
            logger.info("No principal, conversation kept in memory only")
            return Conversation(
                id=f"ephemeral-{uuid4().hex}",
                title=title,
                created_at=now,
                updated_at=now,
                storage_mode="remote",
            )
        rows = await self._request(
            "POST",
            "/conversations",
            principal,
            json={"user_id": principal.user_id, "title": title},
            headers={"Prefer": "return=representation"},
            params={"select": "id,title,created_at,updated_at"},
        )
        row = rows[0] if isinstance(rows, list) and rows else rows
        if not isinstance(row, dict) or "id" not in row:
            raise PersistenceError(code="STORE_WRITE_ERROR", message="conversation insert returned no row")
        return self._to_conversation(row)

    async def add_message(self, conversation_id: str, message: MessageRecord) -> None:
        principal = self.principal
        if principal is None or conversation_id.startswith("ephemeral-"):
            return
        await self._request(
            "POST",
            "/messages",
            principal,
            json={
                "conversation_id": conversation_id,
                "user_id": principal.user_id,
                "role": message.role,
                "content": message.content,
            },
        )
        await self._request(
            "PATCH",
            "/conversations",
            principal,
            json={"updated_at": datetime.now(timezone.utc).isoformat()},
            params={"id": f"eq.{conversation_id}"},
        )

    async def list_conversations(self, limit: Optional[int] = None) -> List[Conversation]:
        principal = self.principal
        if principal is None:
            return []
        limit = limit or getattr(self._settings, "conversation_list_limit", 100)
        rows = await self._request(
            "GET",
            "/conversations",
            principal,
            params={
                "select": "id,title,created_at,updated_at",
                "order": "updated_at.desc",
                "limit": str(limit),
            },
        )
        convs = [self._to_conversation(r) for r in rows or []]
        # 服务端已排序；相同时间戳保持返回顺序
        convs.sort(key=lambda c: c.updated_at, reverse=True)
        return convs

    async def list_messages(self, conversation_id: str) -> List[MessageRecord]:
        principal = self.principal
        if principal is None or conversation_id.startswith("ephemeral-"):
            return []
        rows = await self._request(
            "GET",
            "/messages",
            principal,
            params={
                "select": "id,role,content,created_at",
                "conversation_id": f"eq.{conversation_id}",
                "order": "id.asc",
            },
        )
        return [self._to_message(conversation_id, i, r) for i, r in enumerate(rows or [])]

    async def update_title(self, conversation_id: str, title: str) -> None:
        principal = self.principal
        if principal is None or conversation_id.startswith("ephemeral-"):
            return
        await self._request(
            "PATCH",
            "/conversations",
            principal,
            json={"title": title},
            params={"id": f"eq.{conversation_id}"},
        )

    async def delete_conversation(self, conversation_id: str) -> None:
        principal = self.principal
        if principal is None or conversation_id.startswith("ephemeral-"):
            return
        await self._delete_one(conversation_id, principal)

    async def delete_all(self) -> None:
        principal = self.principal
        if principal is None:
            return
        try:
            await self._request(
                "POST",
                "/rpc/delete_all_conversations_for_user",
                principal,
                json={"uid": principal.user_id},
            )
            return
        except PersistenceError as e:
            logger.warning("Bulk delete RPC failed, deleting one by one", extra={"extra": {"error": e.message}})
        rows = await self._request(
            "GET",
            "/conversations",
            principal,
            params={"select": "id", "user_id": f"eq.{principal.user_id}"},
        )
        for row in rows or []:
            await self._delete_one(str(row["id"]), principal)

    # ---- 辅助方法 ----

    async def _delete_one(self, conversation_id: str, principal: AuthPrincipal) -> None:
        await self._request("DELETE", "/messages", principal, params={"conversation_id": f"eq.{conversation_id}"})
        await self._request("DELETE", "/conversations", principal, params={"id": f"eq.{conversation_id}"})

    async def _request(
        self,
        method: str,
        path: str,
        principal: AuthPrincipal,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        api_key = getattr(self._settings, "remote_api_key", None) or ""
        all_headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {principal.access_token}",
            "Content-Type": "application/json",
        }
        all_headers.update(headers or {})
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.http_timeout,
                transport=self._transport,
                trust_env=False,
            ) as client:
                resp = await client.request(
                    method,
                    f"{self._rest}{path}",
                    json=json,
                    params=params,
                    headers=all_headers,
                )
        except httpx.RequestError as e:
            raise PersistenceError(code="STORE_NETWORK_ERROR", message=str(e))
        if resp.status_code >= 400:
            code = "STORE_READ_ERROR" if method == "GET" else "STORE_WRITE_ERROR"
            raise PersistenceError(code=code, message=resp.text, http_status=resp.status_code)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise PersistenceError(code="STORE_READ_ERROR", message=str(e))

    @staticmethod
    def _to_conversation(row: Dict[str, Any]) -> Conversation:
        return Conversation(
            id=str(row["id"]),
            title=row.get("title") or "",
            created_at=_parse_dt(row.get("created_at")),
            updated_at=_parse_dt(row.get("updated_at") or row.get("created_at")),
            storage_mode="remote",
        )

    @staticmethod
    def _to_message(conversation_id: str, index: int, row: Dict[str, Any]) -> MessageRecord:
        return MessageRecord(
            id=str(row["id"]),
            conversation_id=conversation_id,
            role=row.get("role") or "user",
            content=row.get("content") or "",
            position=index,
            created_at=_parse_dt(row.get("created_at")),
            meta={},
        )

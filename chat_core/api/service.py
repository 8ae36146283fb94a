"""对外服务模块。

ChatService 驱动一个活动会话：发送消息、切换/新建/删除会话、跳过打字效果。
它同时是 TypingRenderer 的渲染目标，内存中的 messages 列表就是界面显示的内容。

同一时刻只允许一轮对话在进行：上一轮尚未结束时再次发送会抛出
ExchangeInProgressError；上一轮只剩打字效果未完成时，新的发送会先跳过它。
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.conversation import ConversationStore, MessageRecord, derive_title
from chat_core.domain.exceptions import (
    AllProvidersExhausted,
    BusinessError,
    ExchangeInProgressError,
    ValidationError,
)
from chat_core.domain.models import ChatMessage, ChatRequest, Role
from chat_core.infrastructure.logging.logger import logger
from chat_core.orchestration.fallback import FallbackOrchestrator
from chat_core.prompts import build_grounding_context, detect_language
from chat_core.providers import create_provider_chain
from chat_core.providers.base import ProviderAdapter
from chat_core.rendering.typing_renderer import TypingRenderer
from chat_core.streaming.segmenter import create_segmenter


Listener = Callable[[List[MessageRecord]], None]


class ChatService:
    def __init__(
        self,
        store: ConversationStore,
        providers: Optional[Sequence[ProviderAdapter]] = None,
        cfg=settings,
        listener: Optional[Listener] = None,
    ):
        self._settings = cfg
        self._store = store
        self._listener = listener
        self.messages: List[MessageRecord] = []
        self.conversation_id: Optional[str] = None
        self._title_pending = False
        self._in_flight = False
        self._renderer = TypingRenderer(self, speed_ms=cfg.typing_speed_ms, cursor=cfg.typing_cursor)
        self._orchestrator = FallbackOrchestrator(
            providers if providers is not None else create_provider_chain(cfg=cfg),
            self._renderer,
            segmenter=create_segmenter(cfg.segmenter),
            attempt_timeout=cfg.attempt_timeout,
        )

    @property
    def renderer(self) -> TypingRenderer:
        return self._renderer

    @property
    def orchestrator(self) -> FallbackOrchestrator:
        return self._orchestrator

    @property
    def is_busy(self) -> bool:
        return self._in_flight

    # ---- RenderSink ----

    def update(self, message_id: str, content: str) -> None:
        for m in self.messages:
            if m.id == message_id:
                m.content = content
                break
        else:
            self.messages.append(self._new_record("assistant", content, message_id=message_id))
        self._emit()

    def remove(self, message_id: str) -> None:
        self.messages = [m for m in self.messages if m.id != message_id]
        self._emit()

    # ---- 对话 ----

    async def send(self, user_input: str, wait_rendered: bool = True) -> MessageRecord:
        """发送一条用户消息并返回助手消息。

        Args:
            user_input: 用户输入内容
            wait_rendered: 是否等待打字效果完成后再返回

        Raises:
            ValidationError: 输入为空
            ExchangeInProgressError: 上一轮对话仍在进行
            AllProvidersExhausted: 所有 Provider 均失败，用户消息仍会保留
        """
        if not (user_input or "").strip():
            raise ValidationError(code="EMPTY_INPUT", message="message is empty")
        self._ensure_idle()

        self._renderer.skip()
        self._in_flight = True
        log_ctx: Dict[str, Any] = {"trace_id": f"tr-{uuid4().hex}"}
        try:
            conversation_id = await self._ensure_conversation(user_input, log_ctx)
            log_ctx["conversation_id"] = conversation_id
            user_rec = self._new_record("user", user_input)
            self.messages.append(user_rec)
            self._emit()
            await self._persist(user_rec, log_ctx)

            req = self._build_request(user_input)
            try:
                result = await self._orchestrator.run(req, log_ctx)
            except AllProvidersExhausted as e:
                attempts = e.extra.get("attempts", [])
                self._log(logging.ERROR, "Chat failed", log_ctx, error=e.message, attempts=len(attempts))
                raise

            assistant_rec = self._find(result.message_id)
            if assistant_rec is None:
                assistant_rec = self._new_record("assistant", result.text, message_id=result.message_id)
                self.messages.append(assistant_rec)
            assistant_rec.meta["provider"] = result.provider
            if result.text:
                final = MessageRecord(
                    id=assistant_rec.id,
                    conversation_id=assistant_rec.conversation_id,
                    role="assistant",
                    content=result.text,
                    position=assistant_rec.position,
                    created_at=assistant_rec.created_at,
                    meta=dict(assistant_rec.meta),
                )
                await self._persist(final, log_ctx)
        finally:
            self._in_flight = False

        if wait_rendered:
            await self._renderer.wait()
        return assistant_rec

    def skip(self) -> None:
        self._renderer.skip()

    # ---- 会话管理 ----

    async def new_chat(self) -> Optional[str]:
        self._ensure_idle()
        self._renderer.cancel()
        self.messages = []
        self.conversation_id = None
        try:
            conv = await self._store.create_conversation(self._settings.default_title)
        except BusinessError as e:
            self._log(logging.WARNING, "Failed to create conversation", {}, error=e.message)
        else:
            self.conversation_id = conv.id
            self._title_pending = True
        self._emit()
        return self.conversation_id

    async def select_conversation(self, conversation_id: str) -> List[MessageRecord]:
        self._ensure_idle()
        self._renderer.cancel()
        self.conversation_id = conversation_id
        self._title_pending = False
        try:
            self.messages = await self._store.list_messages(conversation_id)
        except BusinessError as e:
            self._log(logging.WARNING, "Failed to load messages", {"conversation_id": conversation_id}, error=e.message)
            self.messages = []
        self._emit()
        return self.messages

    async def delete_conversation(self, conversation_id: str) -> None:
        if self.conversation_id == conversation_id:
            self._ensure_idle()
        try:
            await self._store.delete_conversation(conversation_id)
        except BusinessError as e:
            log_ctx = {"conversation_id": conversation_id}
            self._log(logging.WARNING, "Failed to delete conversation", log_ctx, error=e.message)
        if self.conversation_id == conversation_id:
            self._reset()

    async def delete_all(self) -> None:
        self._ensure_idle()
        try:
            await self._store.delete_all()
        except BusinessError as e:
            self._log(logging.WARNING, "Failed to delete all conversations", {}, error=e.message)
        self._reset()

    async def list_conversations(self, limit: Optional[int] = None):
        try:
            return await self._store.list_conversations(limit or self._settings.conversation_list_limit)
        except BusinessError as e:
            self._log(logging.WARNING, "Failed to load conversations", {}, error=e.message)
            return []

    async def search_conversations(self, query: str, limit: Optional[int] = None):
        """按标题或首条消息内容（不区分大小写）过滤会话。"""

        convs = await self.list_conversations(limit)
        q = (query or "").strip().lower()
        if not q:
            return convs
        return [
            c for c in convs
            if q in (c.title or "").lower() or (c.messages and q in (c.messages[0].content or "").lower())
        ]

    # ---- 辅助方法 ----

    async def _ensure_conversation(self, user_input: str, log_ctx: Dict[str, Any]) -> Optional[str]:
        title = derive_title(user_input, self._settings.default_title, self._settings.title_max_chars)
        if self.conversation_id is None:
            try:
                conv = await self._store.create_conversation(title)
            except BusinessError as e:
                self._log(logging.WARNING, "Failed to create conversation", log_ctx, error=e.message)
                return None
            self.conversation_id = conv.id
            self._title_pending = False
            self._log(logging.INFO, "Created new conversation", log_ctx, conversation_id=conv.id)
        elif self._title_pending:
            self._title_pending = False
            try:
                await self._store.update_title(self.conversation_id, title)
            except BusinessError as e:
                self._log(logging.WARNING, "Failed to update title", log_ctx, error=e.message)
        return self.conversation_id

    async def _persist(self, record: MessageRecord, log_ctx: Dict[str, Any]) -> None:
        if self.conversation_id is None:
            return
        try:
            await self._store.add_message(self.conversation_id, record)
        except BusinessError as e:
            self._log(logging.WARNING, "Failed to persist message", log_ctx, error=e.message, code=e.code)
            return
        self._log(logging.INFO, "Stored message", log_ctx, message_id=record.id, role=record.role)

    def _build_request(self, user_input: str) -> ChatRequest:
        locale = self._settings.locale or detect_language(user_input)
        history = [m for m in self.messages if m.role != "assistant" or m.content.strip()]
        max_context = self._settings.max_context_messages
        if len(history) > max_context:
            history = history[-max_context:]
        messages = [ChatMessage(role="system", content=build_grounding_context(user_input, locale))]
        messages.extend(ChatMessage(role=m.role, content=m.content) for m in history)
        return ChatRequest(messages=messages, conversation_id=self.conversation_id, language=locale)

    def _new_record(self, role: Role, content: str, message_id: Optional[str] = None) -> MessageRecord:
        return MessageRecord(
            id=message_id or f"m-{uuid4().hex}",
            conversation_id=self.conversation_id or "",
            role=role,
            content=content,
            position=len(self.messages),
            created_at=datetime.now(timezone.utc),
        )

    def _find(self, message_id: str) -> Optional[MessageRecord]:
        for m in self.messages:
            if m.id == message_id:
                return m
        return None

    def _ensure_idle(self) -> None:
        if self._in_flight:
            raise ExchangeInProgressError(
                code="EXCHANGE_IN_PROGRESS",
                message="previous reply still streaming",
                http_status=409,
            )

    def _reset(self) -> None:
        self._renderer.cancel()
        self.conversation_id = None
        self._title_pending = False
        self.messages = []
        self._emit()

    def _emit(self) -> None:
        if self._listener is not None:
            self._listener(list(self.messages))

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})

"""Provider 回退编排。

状态机：IDLE → TRYING(provider_i) → SUCCESS | TRYING(provider_i+1) | ALL_FAILED。

按配置的优先级依次尝试 Provider。传输失败、流结束但没有可见文本、超时
或任何其他异常都视为软失败：丢弃本次尝试的 DeltaBuffer 与打字会话（包括
已经显示的部分文本），再打开下一个 Provider。所有 Provider 都失败时抛出
AllProvidersExhausted，这是唯一会传给调用方的错误。
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.exceptions import AllProvidersExhausted, BusinessError, EmptyResponseError
from chat_core.domain.models import AttemptOutcome, ChatRequest, ExchangeResult, ProviderAttempt
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.base import ProviderAdapter, ProviderStream
from chat_core.rendering.typing_renderer import TypingRenderer
from chat_core.streaming.frames import FrameNormalizer
from chat_core.streaming.reconciler import DeltaBuffer, TokenReconciler
from chat_core.streaming.segmenter import TextSegmenter, create_segmenter


class OrchestratorState(str, Enum):
    IDLE = "idle"
    TRYING = "trying"
    SUCCESS = "success"
    ALL_FAILED = "all_failed"


class FallbackOrchestrator:
    """一次只驱动一轮对话；同一实例可以在上一轮结束后复用。"""

    def __init__(
        self,
        providers: Sequence[ProviderAdapter],
        renderer: TypingRenderer,
        segmenter: Optional[TextSegmenter] = None,
        attempt_timeout: Optional[float] = None,
    ):
        if not providers:
            raise ValueError("At least one provider is required")
        self._providers = list(providers)
        self._renderer = renderer
        self._segmenter = segmenter or create_segmenter(getattr(settings, "segmenter", "grapheme"))
        self._attempt_timeout = attempt_timeout if attempt_timeout is not None else settings.attempt_timeout
        self.state = OrchestratorState.IDLE
        self.current_provider: Optional[str] = None
        self.attempts: List[ProviderAttempt] = []
        self.buffer: Optional[DeltaBuffer] = None

    @property
    def provider_names(self) -> List[str]:
        return [p.name for p in self._providers]

    async def run(self, req: ChatRequest, log_ctx: Optional[Dict[str, Any]] = None) -> ExchangeResult:
        log_ctx = dict(log_ctx or {})
        self.attempts = []
        self.buffer = None
        for provider in self._providers:
            self.state = OrchestratorState.TRYING
            self.current_provider = provider.name
            message_id = f"m-{uuid4().hex}"
            self.buffer = DeltaBuffer(segmenter=self._segmenter)
            self.attempts.append(ProviderAttempt(provider_id=provider.name, outcome=AttemptOutcome.PENDING))
            self._log(logging.INFO, "Trying provider", log_ctx, provider=provider.name)
            try:
                text = await asyncio.wait_for(
                    self._attempt(provider, req, self.buffer, message_id),
                    timeout=self._attempt_timeout,
                )
            except asyncio.TimeoutError:
                self._soft_failure(provider.name, message_id, "TIMEOUT", log_ctx)
                continue
            except BusinessError as e:
                self._soft_failure(provider.name, message_id, e.code, log_ctx, error=e.message)
                continue
            except Exception as e:  # noqa: BLE001 - 任何异常都切换到下一个 Provider
                self._soft_failure(provider.name, message_id, type(e).__name__, log_ctx, error=str(e))
                continue

            self.attempts[-1] = ProviderAttempt(provider_id=provider.name, outcome=AttemptOutcome.SUCCESS)
            self.state = OrchestratorState.SUCCESS
            self._log(logging.INFO, "Provider succeeded", log_ctx, provider=provider.name, chars=len(text))
            return ExchangeResult(
                text=text,
                provider=provider.name,
                message_id=message_id,
                attempts=list(self.attempts),
            )

        self.state = OrchestratorState.ALL_FAILED
        self.current_provider = None
        self.buffer = None
        self._log(logging.ERROR, "All providers failed", log_ctx, attempts=[a.provider_id for a in self.attempts])
        raise AllProvidersExhausted(
            code="ALL_PROVIDERS_FAILED",
            message="Failed to get AI response. Please try again.",
            http_status=502,
            attempts=list(self.attempts),
        )

    async def _attempt(self, provider: ProviderAdapter, req: ChatRequest, buffer: DeltaBuffer, message_id: str) -> str:
        output = await provider.open(req)
        if isinstance(output, str):
            # 单次生成：跳过分帧与对齐，直接作为已完成的聚合文本显示
            buffer.append(output)
            buffer.close()
            self._renderer.start(buffer, message_id)
            return buffer.aggregate_text
        return await self._consume(output, buffer, message_id)

    async def _consume(self, stream: ProviderStream, buffer: DeltaBuffer, message_id: str) -> str:
        normalizer = FrameNormalizer()
        reconciler = TokenReconciler(buffer)
        started = False
        async with stream:
            async for chunk in stream:
                for frame in normalizer.feed(chunk):
                    started = self._apply(reconciler, frame, message_id, started)
                if normalizer.done:
                    break
            for frame in normalizer.flush():
                started = self._apply(reconciler, frame, message_id, started)

        if not buffer.aggregate_text.strip():
            raise EmptyResponseError(code="STREAM_EMPTY", message="stream completed without visible text")
        buffer.close()
        self._renderer.notify()
        return buffer.aggregate_text

    def _apply(self, reconciler: TokenReconciler, frame: Any, message_id: str, started: bool) -> bool:
        delta = reconciler.reconcile(frame)
        if not delta:
            return started
        if not started:
            self._renderer.start(reconciler.buffer, message_id)
            return True
        self._renderer.notify()
        return True

    def _soft_failure(
        self,
        provider: str,
        message_id: str,
        code: str,
        log_ctx: Dict[str, Any],
        error: Optional[str] = None,
    ) -> None:
        # 已显示的部分文本一并丢弃，不与下一个 Provider 的输出混在一起
        self._renderer.discard(message_id)
        self.attempts[-1] = ProviderAttempt(provider_id=provider, outcome=AttemptOutcome.SOFT_FAILURE, error=code)
        self.buffer = None
        self._log(logging.WARNING, "Provider soft failure", log_ctx, provider=provider, code=code, error=error)

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})

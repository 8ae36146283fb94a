"""单次生成 Provider（非流式）。

在所有流式 Provider 都失败后使用：把会话拍平成一段 prompt，
一次往返拿到完整文本。
- URL: {base_url}/models/{model}:generateContent
- 认证: x-goog-api-key 头

该 Provider 只有在显式报错时才算失败，空文本也视为成功返回。
"""

from typing import Any, Dict

import httpx

from chat_core.config.settings import settings
from chat_core.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from chat_core.domain.models import ChatRequest
from chat_core.providers.registry import GENERATOR_CONFIG


class GeneratorClient:
    """单次生成 Provider 客户端实现。"""

    name = GENERATOR_CONFIG.name
    streaming = GENERATOR_CONFIG.streaming

    def __init__(self, cfg=settings, transport=None):
        self._settings = cfg
        self._transport = transport

    async def open(self, req: ChatRequest) -> str:
        api_key = getattr(self._settings, "generator_api_key", None)
        if not api_key:
            raise ValidationError(code="MISSING_API_KEY", message="GENERATOR_API_KEY not set")
        base = getattr(self._settings, "generator_base_url", None) or GENERATOR_CONFIG.base_url
        model = getattr(self._settings, "generator_model", None) or GENERATOR_CONFIG.model
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.http_timeout,
                transport=self._transport,
                trust_env=False,
            ) as client:
                resp = await client.post(
                    f"{base.rstrip('/')}/models/{model}:generateContent",
                    json=self._build_payload(req),
                    headers={
                        "x-goog-api-key": api_key,
                        "Content-Type": "application/json",
                    },
                )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message="generator rate limit", http_status=429, provider=self.name)
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code, provider=self.name)
        return self._parse_response(resp.json())

    @staticmethod
    def build_prompt(req: ChatRequest) -> str:
        return "\n".join(f"{m.role}: {m.content}" for m in req.messages)

    def _build_payload(self, req: ChatRequest) -> Dict[str, Any]:
        return {"contents": [{"role": "user", "parts": [{"text": self.build_prompt(req)}]}]}

    @staticmethod
    def _parse_response(data: Dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(p.get("text") or "" for p in parts if isinstance(p, dict))

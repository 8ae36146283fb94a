"""流式中继 Provider。

中继是部署在存储服务上的边缘函数，负责补充系统提示词后代理到上游模型，
并把上游的 SSE 帧原样转发回来：
- URL: settings.relay_url，缺省为 {remote_url}/functions/v1/chat
- 认证: Authorization: Bearer <relay_api_key>，同时带 apikey 头
"""

from typing import Any, Dict

from chat_core.config.settings import settings
from chat_core.domain.exceptions import ValidationError
from chat_core.domain.models import ChatRequest
from chat_core.providers.base import ProviderStream, StreamingHttpClient
from chat_core.providers.registry import RELAY_CONFIG


class RelayClient(StreamingHttpClient):
    """流式中继 Provider 客户端实现。"""

    name = RELAY_CONFIG.name
    streaming = RELAY_CONFIG.streaming

    def __init__(self, cfg=settings, transport=None):
        super().__init__(cfg, transport)

    async def open(self, req: ChatRequest) -> ProviderStream:
        api_key = getattr(self._settings, "relay_api_key", None)
        if not api_key:
            raise ValidationError(code="MISSING_API_KEY", message="RELAY_API_KEY not set")
        url = self._url()
        return await self._post_stream(
            url,
            self._build_payload(req),
            headers={
                "Authorization": f"Bearer {api_key}",
                "apikey": api_key,
                "Content-Type": "application/json",
            },
        )

    def _url(self) -> str:
        url = getattr(self._settings, "resolved_relay_url", None) or getattr(self._settings, "relay_url", None)
        if not url:
            raise ValidationError(code="MISSING_RELAY_URL", message="RELAY_URL or REMOTE_URL not set")
        return url

    @staticmethod
    def _build_payload(req: ChatRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"messages": req.payload_messages()}
        if req.conversation_id:
            payload["conversation_id"] = req.conversation_id
        if req.language:
            payload["language"] = req.language
        return payload

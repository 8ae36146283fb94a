"""OpenAI 兼容网关 Provider 适配器。

接口风格与 OpenAI 一致，使用 chat/completions 端点：
- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>
- 额外头: HTTP-Referer / X-Title，供网关做来源统计

只依赖公共字段：model/messages/stream。
"""

from typing import Any, Dict

from chat_core.config.settings import settings
from chat_core.domain.exceptions import ValidationError
from chat_core.domain.models import ChatRequest
from chat_core.providers.base import ProviderStream, StreamingHttpClient
from chat_core.providers.registry import GATEWAY_CONFIG


class GatewayClient(StreamingHttpClient):
    """流式网关 Provider 客户端实现。"""

    name = GATEWAY_CONFIG.name
    streaming = GATEWAY_CONFIG.streaming

    def __init__(self, cfg=settings, transport=None):
        super().__init__(cfg, transport)

    async def open(self, req: ChatRequest) -> ProviderStream:
        api_key = getattr(self._settings, "gateway_api_key", None)
        if not api_key:
            raise ValidationError(code="MISSING_API_KEY", message="GATEWAY_API_KEY not set")
        base = getattr(self._settings, "gateway_base_url", None) or GATEWAY_CONFIG.base_url
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "X-Title": getattr(self._settings, "gateway_title", "") or "",
        }
        referer = getattr(self._settings, "gateway_referer", "")
        if referer:
            headers["HTTP-Referer"] = referer
        return await self._post_stream(f"{base.rstrip('/')}/chat/completions", self._build_payload(req), headers)

    def _build_payload(self, req: ChatRequest) -> Dict[str, Any]:
        return {
            "model": getattr(self._settings, "gateway_model", None) or GATEWAY_CONFIG.model,
            "messages": req.payload_messages(),
            "stream": True,
        }

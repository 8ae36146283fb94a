"""Provider 抽象接口。

上层 FallbackOrchestrator 不直接依赖具体厂商的 HTTP 细节，而是依赖此协议：

- 流式 Provider（中继、网关）的 open() 返回 ProviderStream，逐块产出原始字节，
  由 FrameNormalizer / TokenReconciler 负责解析。
- 单次生成 Provider 的 open() 直接返回完整文本。

这样可以在不改编排代码的前提下接入更多厂商。
"""

from typing import AsyncIterator, Dict, Optional, Protocol, Union

import httpx

from chat_core.domain.exceptions import ApiError, NetworkError, RateLimitError, TransportError
from chat_core.domain.models import ChatRequest


class ProviderStream:
    """一次已建立的流式 HTTP 响应。

    作为异步上下文管理器使用，退出时关闭响应与底层 AsyncClient。
    """

    def __init__(self, response: httpx.Response, client: httpx.AsyncClient):
        self._response = response
        self._client = client

    @property
    def status_code(self) -> int:
        return self._response.status_code

    async def __aenter__(self) -> "ProviderStream":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iter_chunks()

    async def _iter_chunks(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes():
                if chunk:
                    yield chunk
        except httpx.TransportError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))

    async def aclose(self) -> None:
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()


ProviderOutput = Union[ProviderStream, str]


class ProviderAdapter(Protocol):
    """Provider 适配器协议。

    实现者需要提供：
    - name: Provider 名称，用于日志与尝试记录。
    - streaming: 是否为流式 Provider。
    - open(req): 发起请求，返回 ProviderStream 或完整文本。
    """

    name: str
    streaming: bool

    async def open(self, req: ChatRequest) -> ProviderOutput:
        ...


class StreamingHttpClient:
    """流式 Provider 的公共实现：POST JSON，检查状态码，返回 ProviderStream。"""

    name = "streaming"
    streaming = True

    def __init__(self, cfg, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = cfg
        self._transport = transport

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._settings.http_timeout,
            transport=self._transport,
            trust_env=False,
        )

    async def _post_stream(self, url: str, payload: dict, headers: Dict[str, str]) -> ProviderStream:
        client = self._new_client()
        try:
            resp = await self._send(client, url, payload, headers)
        except BaseException:
            # 包括超时取消：未交给 ProviderStream 的客户端在这里关闭
            await client.aclose()
            raise
        return ProviderStream(resp, client)

    async def _send(
        self,
        client: httpx.AsyncClient,
        url: str,
        payload: dict,
        headers: Dict[str, str],
    ) -> httpx.Response:
        try:
            request = client.build_request("POST", url, json=payload, headers=headers)
            resp = await client.send(request, stream=True)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)

        try:
            body = "" if resp.is_success else await _read_error_text(resp)
            self._check_status(resp, body)
        except BaseException:
            await resp.aclose()
            raise
        return resp

    def _check_status(self, resp: httpx.Response, body: str) -> None:
        if resp.status_code == 429:
            raise RateLimitError(
                code="RATE_LIMIT",
                message=f"{self.name} rate limit",
                http_status=429,
                provider=self.name,
            )
        if not resp.is_success:
            raise ApiError(
                code="API_ERROR",
                message=body or resp.reason_phrase,
                http_status=resp.status_code,
                provider=self.name,
            )
        if resp.status_code == 204:
            raise TransportError(
                code="EMPTY_BODY",
                message=f"{self.name} returned no body",
                http_status=204,
                provider=self.name,
            )


async def _read_error_text(resp: httpx.Response) -> str:
    try:
        raw = await resp.aread()
    except httpx.HTTPError:
        return ""
    return raw.decode("utf-8", errors="replace")[:500]

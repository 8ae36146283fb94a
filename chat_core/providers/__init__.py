"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 默认配置 (registry)。
- 提供各 Provider 的具体实现 (relay_client、gateway_client、generator_client)。
"""

from typing import List, Literal, Optional, Sequence

from chat_core.config.settings import settings
from chat_core.providers.base import ProviderAdapter, ProviderStream
from chat_core.providers.gateway_client import GatewayClient
from chat_core.providers.generator_client import GeneratorClient
from chat_core.providers.relay_client import RelayClient
from chat_core.providers.registry import (
    GATEWAY_CONFIG,
    GENERATOR_CONFIG,
    PROVIDER_REGISTRY,
    RELAY_CONFIG,
    get_provider_config,
)


ProviderName = Literal["relay", "gateway", "generator"]


_CLIENTS = {
    RELAY_CONFIG.name: RelayClient,
    GATEWAY_CONFIG.name: GatewayClient,
    GENERATOR_CONFIG.name: GeneratorClient,
}


def create_provider(name: str, cfg=None, transport=None) -> ProviderAdapter:
    """根据名称创建 Provider 实例，未注册的名称抛出 KeyError。"""

    config = get_provider_config(name)
    return _CLIENTS[config.name](cfg or settings, transport)


def create_provider_chain(order: Optional[Sequence[str]] = None, cfg=None, transport=None) -> List[ProviderAdapter]:
    """按回退顺序创建 Provider 列表，默认取配置中的 provider_order。"""

    cfg = cfg or settings
    names = order or getattr(cfg, "provider_order", None) or list(PROVIDER_REGISTRY)
    return [create_provider(n, cfg, transport) for n in names]


__all__ = [
    "GatewayClient",
    "GeneratorClient",
    "ProviderAdapter",
    "ProviderName",
    "ProviderStream",
    "RelayClient",
    "create_provider",
    "create_provider_chain",
]

"""Provider 配置。

三个 Provider 按固定优先级回退：

- relay: 托管的中继函数，代理上游模型并转发 SSE 帧。
- gateway: 直接调用 OpenAI 兼容的流式网关。
- generator: 非流式的单次生成接口，作为最后的兜底。

各 Provider 的默认地址与模型集中在这里，运行时可被 settings 覆盖。
"""

from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: Optional[str]
    model: Optional[str]
    streaming: bool


RELAY_CONFIG = ProviderConfig(
    name="relay",
    base_url=None,  # 由 settings.relay_url / remote_url 决定
    model=None,  # 上游模型由中继自身决定
    streaming=True,
)

GATEWAY_CONFIG = ProviderConfig(
    name="gateway",
    base_url="https://openrouter.ai/api/v1",
    model="google/gemini-2.0-flash-exp:free",
    streaming=True,
)

GENERATOR_CONFIG = ProviderConfig(
    name="generator",
    base_url="https://generativelanguage.googleapis.com/v1beta",
    model="gemini-2.5-flash",
    streaming=False,
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "relay": RELAY_CONFIG,
    "gateway": GATEWAY_CONFIG,
    "generator": GENERATOR_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")

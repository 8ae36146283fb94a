"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


PROVIDER_NAMES = ("relay", "gateway", "generator")


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    provider_order: List[str] = Field(
        default_factory=lambda: ["relay", "gateway", "generator"],
        description="Provider 回退顺序，依次尝试",
    )

    # 流式中继（托管的边缘函数，转发上游 SSE）
    relay_url: Optional[str] = Field(default=None, description="中继函数完整 URL，缺省为 {remote_url}/functions/v1/chat")
    relay_api_key: Optional[str] = Field(default=None, description="中继函数使用的发布密钥")

    # OpenAI 兼容网关
    gateway_api_key: Optional[str] = Field(default=None, description="网关 API 密钥")
    gateway_base_url: Optional[str] = Field(default=None, description="网关 API 基础URL，缺省取 Provider 注册表")
    gateway_model: Optional[str] = Field(default=None, description="网关模型 ID，缺省取 Provider 注册表")
    gateway_referer: str = Field(default="", description="HTTP-Referer 请求头")
    gateway_title: str = Field(default="Smart Shelf", description="X-Title 请求头")

    # 单次生成（非流式，最后的兜底）
    generator_api_key: Optional[str] = Field(default=None, description="生成接口 API 密钥")
    generator_base_url: Optional[str] = Field(default=None, description="生成接口基础URL，缺省取 Provider 注册表")
    generator_model: Optional[str] = Field(default=None, description="生成模型 ID，缺省取 Provider 注册表")

    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")
    attempt_timeout: float = Field(default=90.0, ge=1.0, description="单个 Provider 尝试的总超时（秒）")

    # ---- 打字渲染 ----
    typing_speed_ms: int = Field(default=50, ge=0, le=1000, description="每次 tick 的间隔（毫秒）")
    typing_cursor: str = Field(default=" |", description="打字过程中的光标标记")
    segmenter: Literal["grapheme", "codepoint"] = Field(
        default="grapheme",
        description="文本切分方式：grapheme 使用扩展字素簇，codepoint 为逐码点的低保真回退",
    )

    # ---- 存储 ----
    storage_mode: Literal["local", "remote"] = Field(default="local", description="会话存储模式")
    storage_root: str = Field(default=".storage", description="本地存储根目录")
    local_storage_key: str = Field(default="smart-shelf:chats", description="本地存储的键名")
    remote_url: Optional[str] = Field(default=None, description="远端存储服务 URL")
    remote_api_key: Optional[str] = Field(default=None, description="远端存储服务的匿名/发布密钥")
    conversation_list_limit: int = Field(default=100, ge=1, le=1000, description="会话列表最大条数")

    # ---- 对话 ----
    default_title: str = Field(default="New Chat", description="新会话默认标题")
    title_max_chars: int = Field(default=60, ge=1, description="由首条消息生成标题时截取的字符数")
    max_context_messages: int = Field(default=20, ge=1, le=100, description="最大上下文消息数")
    locale: Optional[Literal["en", "ar"]] = Field(default=None, description="界面语言，为空时按输入自动识别")

    log_dir: str = Field(default="logs", description="日志目录")
    log_level: str = Field(default="INFO", description="日志级别")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志中的消息正文")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("relay_api_key", "gateway_api_key", "generator_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("provider_order")
    @classmethod
    def validate_provider_order(cls, v: List[str]) -> List[str]:
        order = [name.strip().lower() for name in v if name and name.strip()]
        unknown = [name for name in order if name not in PROVIDER_NAMES]
        if unknown:
            raise ValueError(f"Unknown providers: {unknown}")
        if not order:
            raise ValueError("provider_order must not be empty")
        return order

    @property
    def resolved_relay_url(self) -> Optional[str]:
        if self.relay_url:
            return self.relay_url
        if self.remote_url:
            return f"{self.remote_url.rstrip('/')}/functions/v1/chat"
        return None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()

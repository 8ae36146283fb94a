import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from chat_core.config.settings import settings

# 可能包含用户输入或模型输出的字段
CONTENT_FIELDS = ("content", "text", "prompt", "user_input")
SECRET_FIELDS = ("api_key", "access_token", "authorization", "apikey")


def _redact(payload: Dict[str, Any], redact_content: bool) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in payload.items():
        lowered = key.lower()
        if any(s in lowered for s in SECRET_FIELDS):
            out[key] = "***"
        elif redact_content and lowered in CONTENT_FIELDS and isinstance(value, str):
            out[key] = f"<{len(value)} chars>"
        else:
            out[key] = value
    return out


class JsonFormatter(logging.Formatter):
    """每条记录输出一行 JSON，extra={"extra": {...}} 中的字段平铺到顶层。"""

    def __init__(self, redact_content: bool = False):
        super().__init__()
        self._redact_content = redact_content

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload.update(_redact(extra, self._redact_content))
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger() -> logging.Logger:
    logger = logging.getLogger("chat_core")
    level = logging.getLevelName(str(settings.log_level).upper())
    logger.setLevel(level if isinstance(level, int) else logging.INFO)
    if logger.handlers:
        return logger
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(log_dir / "chat.log", encoding="utf-8")
    fh.setFormatter(JsonFormatter(redact_content=settings.log_redact_content))
    logger.addHandler(fh)
    return logger


logger = setup_logger()

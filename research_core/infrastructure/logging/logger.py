import json
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from research_core.config.settings import settings

# 开启 log_redact_content 时这些字段只记录形状，不记录内容
CONTENT_KEYS = ("tool_args", "query", "prompt")
REDACTED_MSG_CHARS = 64


def redact_extra(extra: Dict[str, Any]) -> Dict[str, Any]:
    redacted = dict(extra)
    for key in CONTENT_KEYS:
        if key not in redacted:
            continue
        value = redacted[key]
        # dict 只保留键名
        redacted[key] = sorted(value) if isinstance(value, dict) else f"<{len(str(value))} chars>"
    error = redacted.get("error")
    if isinstance(error, str):
        redacted["error"] = error[:REDACTED_MSG_CHARS]
    return redacted


class JsonFormatter(logging.Formatter):
    def __init__(self, redact: Optional[bool] = None):
        super().__init__()
        self._redact = redact

    def format(self, record: logging.LogRecord) -> str:
        redact = settings.log_redact_content if self._redact is None else self._redact
        msg = record.getMessage()
        if redact:
            msg = (msg or "")[:REDACTED_MSG_CHARS]
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "name": record.name,
            "msg": msg,
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload.update(redact_extra(extra) if redact else extra)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger() -> logging.Logger:
    logger = logging.getLogger("research_core")
    logger.setLevel(logging.INFO)
    if logger.handlers:
        return logger
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(log_dir / "research.log", encoding="utf-8")
    fh.setLevel(logging.INFO)
    fh.setFormatter(JsonFormatter())
    logger.addHandler(fh)
    logger.propagate = False
    return logger


logger = setup_logger()

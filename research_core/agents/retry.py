"""模型调用的重试策略。

- 过载 / UNAVAILABLE / 503 / "max retries exceeded" 视为瞬时错误，线性退避后重试。
- 其他错误一律视为致命错误，立即放弃。
- 无论哪种放弃，都以 FatalModelError 抛给对话引擎，由引擎打印并中止对话。
"""

import re
import time
from typing import Any, Callable, Optional, TypeVar

from research_core.domain.exceptions import FatalModelError, TransientModelError
from research_core.infrastructure.logging.logger import logger

T = TypeVar("T")

TRANSIENT_PATTERN = re.compile(r"overloaded|unavailable|\b503\b|max retries exceeded", re.IGNORECASE)
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_MS = 600


class RetryPolicy:
    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_ms: int = DEFAULT_BACKOFF_MS,
        sleep: Callable[[float], Any] = time.sleep,
    ):
        self.max_attempts = max(1, max_attempts)
        self.backoff_ms = backoff_ms
        self._sleep = sleep

    @staticmethod
    def is_transient(exc: BaseException) -> bool:
        for attr in ("http_status", "status_code", "status"):
            if getattr(exc, attr, None) == 503:
                return True
        reason = getattr(exc, "reason", None)
        if isinstance(reason, str) and "max retries" in reason.lower().replace("_", " "):
            return True
        message = getattr(exc, "message", None) or str(exc)
        return bool(TRANSIENT_PATTERN.search(str(message)))

    def delay_for(self, attempt: int) -> float:
        """第 attempt 次失败后的等待秒数。"""
        return attempt * self.backoff_ms / 1000.0

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        last_error: Optional[TransientModelError] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn(*args, **kwargs)
            except Exception as exc:  # noqa: BLE001 - 所有模型错误都要分类
                if not self.is_transient(exc):
                    logger.error(
                        "Model call failed",
                        extra={"extra": {"attempt": attempt, "error": str(exc), "transient": False}},
                    )
                    raise FatalModelError(str(exc), attempts=attempt, cause=exc) from exc
                last_error = TransientModelError(str(exc), attempts=attempt, cause=exc)
                logger.warning(
                    "Transient model error",
                    extra={"extra": {"attempt": attempt, "max_attempts": self.max_attempts, "error": str(exc)}},
                )
                if attempt < self.max_attempts:
                    self._sleep(self.delay_for(attempt))
        raise FatalModelError(
            f"Model unavailable after {self.max_attempts} attempts: {last_error}",
            attempts=self.max_attempts,
            cause=last_error.cause if last_error else None,
        ) from last_error

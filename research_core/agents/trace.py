"""对话 trace 记录器。"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union
from uuid import uuid4


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class TraceRecorder:
    """把单次对话的每轮模型调用写入 JSON 文件，便于事后审计。"""

    def __init__(self, trace_dir: Union[str, Path], trace_id: Optional[str] = None):
        self.trace_id = trace_id or f"conv-{uuid4().hex}"
        directory = Path(trace_dir).expanduser()
        directory.mkdir(parents=True, exist_ok=True)
        self.path = directory / f"{self.trace_id}.json"
        self.data: Dict[str, Any] = {
            "trace_id": self.trace_id,
            "query": None,
            "started_at": _utcnow(),
            "finished_at": None,
            "final_status": None,
            "final_reply_preview": None,
            "turns": [],
        }
        self._flush()

    def _flush(self) -> None:
        self.path.write_text(json.dumps(self.data, ensure_ascii=False, indent=2), encoding="utf-8")

    def start(self, query: str) -> None:
        self.data["query"] = query
        self._flush()

    def record_model_turn(
        self,
        turn: int,
        *,
        kind: str,
        signature: str = "",
        has_text: bool = False,
        summary: str = "",
        repeat_count: int = 0,
    ) -> None:
        self.data["turns"].append(
            {
                "turn": turn,
                "kind": kind,
                "timestamp": _utcnow(),
                "signature": signature,
                "has_text": has_text,
                "repeat_count": repeat_count,
                "response_summary": summary,
            }
        )
        self._flush()

    def finalize(self, status: str, final_reply: str) -> None:
        self.data["finished_at"] = _utcnow()
        self.data["final_status"] = status
        self.data["final_reply_preview"] = (final_reply or "")[:400]
        self._flush()


def summarize(text: Optional[str], limit: int = 160) -> str:
    if not text:
        return ""
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "..."

"""OpenAI 兼容 chat/completions Provider 适配器。

Gemini（OpenAI 兼容端点）、GLM、Kimi 的接口风格一致：
- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>

本实现只依赖公共字段：model/messages/temperature/max_tokens/top_p/tools/tool_choice。
HTTP 状态码会保留在 ApiError.http_status 上，供重试策略判断（503 视为可重试）。
"""

import json
from typing import Any, Dict, List

import httpx

from research_core.config.settings import settings
from research_core.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from research_core.domain.models import (
    ChatChoice,
    ChatMessage,
    ChatRequest,
    ChatResult,
    ChatUsage,
)
from research_core.providers.registry import GEMINI_CONFIG, GLM_CONFIG, KIMI_CONFIG, ModelConfig, ProviderConfig
from research_core.tools.definitions import ToolCall, ToolDescriptor


class ChatCompletionsClient:
    """chat/completions 协议的通用客户端，具体厂商通过 ProviderConfig 区分。"""

    name = "chat-completions"
    provider_config: ProviderConfig = GEMINI_CONFIG

    def __init__(self, cfg=settings):
        self._settings = cfg

    def chat(self, req: ChatRequest) -> ChatResult:
        pcfg = self.provider_config
        api_key = getattr(self._settings, pcfg.api_key_field, None)
        if not api_key:
            raise ValidationError(code="MISSING_API_KEY", message=f"{pcfg.api_key_field.upper()} not set")
        try:
            model_cfg = pcfg.models[req.model]
        except KeyError:
            raise ValidationError(code="UNKNOWN_MODEL", message=f"{pcfg.name} has no model {req.model!r}")
        payload = self._build_payload(req, model_cfg)
        base = getattr(self._settings, pcfg.base_url_field, None) or pcfg.base_url
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(
                    f"{base}/chat/completions",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=pcfg.name)
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message=f"{pcfg.name} rate limit", http_status=429)
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code, provider=pcfg.name)
        data = resp.json()
        return self._parse_response(data, req)

    # ---- 辅助方法 ----

    def _build_payload(self, req: ChatRequest, model_cfg: ModelConfig) -> dict:
        payload: Dict[str, Any] = {
            "model": model_cfg.provider_model,
            "messages": [self._message_to_payload(m) for m in req.messages],
            "temperature": req.temperature if req.temperature is not None else model_cfg.default_temperature,
            "max_tokens": req.max_tokens or model_cfg.max_tokens,
            "top_p": req.top_p,
        }
        if req.tools:
            payload["tools"] = [self._serialize_tool(tool) for tool in req.tools]
            payload["tool_choice"] = req.tool_choice
        return payload

    def _parse_response(self, data: dict, req: ChatRequest) -> ChatResult:
        choices: List[ChatChoice] = []
        for i, ch in enumerate(data.get("choices", [])):
            msg = ch.get("message") or {}
            choices.append(ChatChoice(index=i, message=self._build_chat_message(msg), finish_reason=ch.get("finish_reason")))
        usage_raw = data.get("usage") or {}
        usage = ChatUsage(
            prompt_tokens=usage_raw.get("prompt_tokens", 0),
            completion_tokens=usage_raw.get("completion_tokens", 0),
            total_tokens=usage_raw.get("total_tokens", 0),
        )
        return ChatResult(provider=self.name, model=req.model, choices=choices, usage=usage, raw=data)

    def _build_chat_message(self, payload: Dict[str, Any]) -> ChatMessage:
        """解析 message 中的文本与 tool_calls。"""

        role = payload.get("role") or "assistant"
        content = payload.get("content") or ""
        tool_calls: List[ToolCall] = []
        for idx, call in enumerate(payload.get("tool_calls") or []):
            func = call.get("function") or {}
            tool_calls.append(
                ToolCall(
                    id=call.get("id") or f"tool_call_{idx}",
                    name=func.get("name") or call.get("name") or "",
                    arguments=self._parse_arguments(func.get("arguments")),
                )
            )

        return ChatMessage(
            role=role,
            content=content,
            tool_calls=tool_calls or None,
        )

    def _message_to_payload(self, message: ChatMessage) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": message.role}
        if message.content:
            payload["content"] = message.content
        return payload

    def _serialize_tool(self, tool: ToolDescriptor) -> Dict[str, Any]:
        parameters = dict(tool.input_schema or {})
        parameters.setdefault("type", "object")
        parameters.setdefault("properties", {})
        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": parameters,
            },
        }

    @staticmethod
    def _parse_arguments(raw: Any) -> Dict[str, Any]:
        if isinstance(raw, dict):
            return raw
        if isinstance(raw, str):
            if not raw.strip():
                return {}
            try:
                return json.loads(raw)
            except json.JSONDecodeError:
                return {"_raw": raw}
        return {}


class GeminiClient(ChatCompletionsClient):
    name = "gemini"
    provider_config = GEMINI_CONFIG


class GlmClient(ChatCompletionsClient):
    name = "glm"
    provider_config = GLM_CONFIG


class KimiClient(ChatCompletionsClient):
    name = "kimi"
    provider_config = KIMI_CONFIG

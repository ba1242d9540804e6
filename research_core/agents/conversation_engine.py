"""多轮工具调用对话引擎。

每一轮：
1. 通过重试策略调用模型（携带完整 transcript 与当前工具集）。
2. 若本轮调用了工具，先更新重复调用计数；达到阈值则强制做一次禁用工具的最终调用并结束。
3. 只有工具结果没有文本时，用"按用户请求整理工具输出"的提示词再调用一次模型。
4. 对候选回答分类：追问（交给用户回答）、过短（要求展开）、或最终回答（结束）。

循环只会因最终回答、重复调用保护、用户 /stop 或致命模型错误而终止。
"""

import re
from typing import Any, Dict, List, Optional
from uuid import uuid4

from research_core.domain.conversation import ConversationOutcome, ConversationState, TerminalState
from research_core.domain.exceptions import FatalModelError
from research_core.domain.models import ModelTurnResult
from research_core.infrastructure.logging.logger import logger
from research_core.prompts import render_prompt
from research_core.tools.definitions import ToolDescriptor
from .channel import HumanChannel
from .loop_guard import LoopGuard, tool_signature
from .model_gateway import ModelGateway
from .retry import RetryPolicy
from .trace import TraceRecorder, summarize

CLARIFICATION_PATTERN = re.compile(
    r"([?]\s*$)|(specify|clarify|which|provide more details|what (?:interval|format)|please choose"
    r"|could you (?:specify|clarify|provide)|need more information|please provide|I also need)",
    re.IGNORECASE,
)
MIN_REPLY_WORDS = 12

ELABORATE_INSTRUCTION = "(auto) Please elaborate fully with data, context, and actionable insights."
FINAL_ANSWER_DEMAND = "Please provide the final comprehensive answer now."
BEST_ANSWER_DEMAND = "Provide the best possible final answer now."
CLARIFICATION_HINT = " (/stop to cancel, /run to force answer)"

STOP_COMMAND = "/stop"
RUN_COMMAND = "/run"


def is_clarification(text: str) -> bool:
    return bool(CLARIFICATION_PATTERN.search(text.strip()))


def word_count(text: str) -> int:
    return len(text.split())


class ConversationEngine:
    def __init__(
        self,
        gateway: ModelGateway,
        tools: List[ToolDescriptor],
        channel: HumanChannel,
        *,
        retry: Optional[RetryPolicy] = None,
        loop_guard: Optional[LoopGuard] = None,
        min_reply_words: int = MIN_REPLY_WORDS,
        trace: Optional[TraceRecorder] = None,
    ):
        self._gateway = gateway
        self._tools = list(tools)
        self._channel = channel
        self._retry = retry or RetryPolicy()
        self._loop_guard = loop_guard or LoopGuard()
        self._min_reply_words = min_reply_words
        self._trace = trace

    def run(self, query: str) -> ConversationOutcome:
        state = ConversationState.start(query)
        log_ctx: Dict[str, Any] = {"conversation_id": f"conv-{uuid4().hex}", "tool_count": len(self._tools)}
        self._log("Conversation started", log_ctx)
        if self._trace:
            self._trace.start(query)

        while True:
            state.turn_count += 1
            result = self._call_model(state.transcript, self._tools, log_ctx)
            if result is None:
                return self._finish(state, TerminalState.ABORTED, "", log_ctx)

            signature = ""
            if result.has_invocations:
                self._channel.display(f"Tools called: {', '.join(result.tool_names)}")
                signature = tool_signature(result.tool_names)
                tripped = self._loop_guard.observe(state, signature)
                self._record_turn(state, "model", result, signature)
                if tripped:
                    return self._force_final(state, result, log_ctx)
            else:
                self._record_turn(state, "model", result, signature)

            if result.has_invocations and not result.has_text:
                prompt = render_prompt(
                    "tool_result",
                    query=state.transcript,
                    output=result.invocations[0].result_text,
                )
                summary = self._call_model(prompt, self._tools, log_ctx)
                if summary is None:
                    return self._finish(state, TerminalState.ABORTED, "", log_ctx)
                self._record_turn(state, "tool_summary", summary)
                if not summary.has_text:
                    state.append_assistant(FINAL_ANSWER_DEMAND)
                    continue
                candidate = summary.text.strip()
            elif not result.has_text:
                state.append_assistant(FINAL_ANSWER_DEMAND)
                continue
            else:
                candidate = result.text.strip()

            self._channel.display(candidate)

            if is_clarification(candidate):
                answer = self._channel.prompt(candidate + CLARIFICATION_HINT)
                command = answer.strip().lower()
                if command == STOP_COMMAND:
                    self._channel.display("--- Conversation aborted ---")
                    return self._finish(state, TerminalState.ABORTED, candidate, log_ctx)
                state.append_assistant(candidate)
                state.append_user(answer)
                if command == RUN_COMMAND:
                    state.append_assistant(BEST_ANSWER_DEMAND)
                self._log("Clarification answered", log_ctx, turn=state.turn_count)
                continue

            if word_count(candidate) < self._min_reply_words:
                state.append_assistant(candidate)
                state.append_user(ELABORATE_INSTRUCTION)
                self._log("Reply too short, asking to elaborate", log_ctx, words=word_count(candidate))
                continue

            self._channel.display("--- End of conversation ---")
            return self._finish(state, TerminalState.DONE, candidate, log_ctx)

    def _force_final(
        self,
        state: ConversationState,
        result: ModelTurnResult,
        log_ctx: Dict[str, Any],
    ) -> ConversationOutcome:
        self._channel.display(
            f"⚠️  Detected {state.consecutive_repeat_count} consecutive identical tool calls. Forcing final response..."
        )
        self._log(
            "Loop guard tripped",
            log_ctx,
            signature=state.last_tool_signature,
            repeat_count=state.consecutive_repeat_count,
        )
        prompt = render_prompt(
            "forced_final",
            transcript=state.transcript,
            output=result.invocations[0].result_text,
        )
        forced = self._call_model(prompt, None, log_ctx)
        if forced is None:
            return self._finish(state, TerminalState.ABORTED, "", log_ctx)
        self._record_turn(state, "forced_final", forced)
        text = forced.text.strip()
        self._channel.display(text or "No final text generated.")
        self._channel.display("--- End of conversation (loop prevented) ---")
        return self._finish(state, TerminalState.LOOP_PREVENTED, text, log_ctx)

    def _call_model(
        self,
        prompt: str,
        tools: Optional[List[ToolDescriptor]],
        log_ctx: Dict[str, Any],
    ) -> Optional[ModelTurnResult]:
        try:
            return self._retry.call(self._gateway.generate, prompt, tools)
        except FatalModelError as exc:
            self._log("Model call aborted conversation", log_ctx, error=exc.message, attempts=exc.attempts)
            self._channel.display(f"Model call failed: {exc.message}")
            return None

    def _finish(
        self,
        state: ConversationState,
        terminal: TerminalState,
        reply: str,
        log_ctx: Dict[str, Any],
    ) -> ConversationOutcome:
        self._log("Conversation finished", log_ctx, state=terminal.value, turns=state.turn_count)
        if self._trace:
            self._trace.finalize(terminal.value, reply)
        return ConversationOutcome(state=terminal, reply=reply, conversation=state)

    def _record_turn(
        self,
        state: ConversationState,
        kind: str,
        result: ModelTurnResult,
        signature: str = "",
    ) -> None:
        if not self._trace:
            return
        self._trace.record_model_turn(
            state.turn_count,
            kind=kind,
            signature=signature,
            has_text=result.has_text,
            summary=summarize(result.text),
            repeat_count=state.consecutive_repeat_count,
        )

    @staticmethod
    def _log(message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.info(message, extra={"extra": payload})

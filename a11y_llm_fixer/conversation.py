"""LLM tool-calling conversation driving the accessibility analysis."""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Optional, Protocol

import litellm

from .schema import AssistantReply, ConversationMessage, ConversationResult, ToolCall, ToolError
from .tools import TOOL_SCHEMAS, ToolInvoker

logger = logging.getLogger(__name__)

MAX_ITERATIONS_TEXT = "Max iterations reached"

SYSTEM_PROMPT = (
    "You are an expert web accessibility consultant with access to accessibility testing tools. "
    "Use the tools to analyze HTML for WCAG violations and verify color choices, then provide "
    "precise fixes with exact code replacements. Your final answer must be valid JSON only."
)

FIX_PLAN_INSTRUCTIONS = """Find and fix accessibility issues, especially:
1. COLOR CONTRAST violations - suggest specific hex colors that pass WCAG AA (4.5:1 minimum)
2. Missing alt text for images
3. ARIA issues
4. Form accessibility
5. Heading structure

For each issue provide the exact current code (copied verbatim from the document),
the exact replacement code, and a brief explanation.

When you are done calling tools, answer with this JSON and nothing else:
{
  "summary": "Brief overview of issues found",
  "fixes": [
    {
      "type": "color-contrast|alt-text|aria|form|heading|other",
      "description": "What this fixes",
      "originalCode": "exact current HTML/CSS",
      "fixedCode": "exact replacement",
      "explanation": "why this fixes the issue"
    }
  ]
}"""


class LLMCallError(RuntimeError):
    """The LLM collaborator failed; carries the transcript up to the failure."""

    def __init__(self, message: str, transcript: List[ConversationMessage]):
        super().__init__(message)
        self.transcript = transcript


class ConversationCancelled(RuntimeError):
    def __init__(self, transcript: List[ConversationMessage]):
        super().__init__("Conversation deadline exceeded")
        self.transcript = transcript


class LLMClient(Protocol):
    def complete(self, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]]) -> AssistantReply:
        ...


class LiteLLMClient:
    """Chat completion with tool calling through litellm."""

    def __init__(
        self,
        model: str,
        api_key: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ):
        self.model = model
        self.api_key = api_key
        self.temperature = temperature
        self.max_tokens = max_tokens

    def complete(self, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]]) -> AssistantReply:
        litellm.drop_params = True
        resp = litellm.completion(
            model=self.model,
            messages=messages,
            tools=tools,
            tool_choice="auto",
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            api_key=self.api_key,
        )
        message = resp.choices[0].message
        calls = []
        for tc in getattr(message, "tool_calls", None) or []:
            calls.append(parse_tool_call(tc.id, tc.function.name, tc.function.arguments))
        return AssistantReply(content=getattr(message, "content", None), tool_calls=calls)


def parse_tool_call(call_id: str, name: str, raw_arguments: Optional[str]) -> ToolCall:
    """Build a ToolCall, recording (not raising) argument strings that are not JSON objects."""
    try:
        args = json.loads(raw_arguments or "{}")
    except json.JSONDecodeError as e:
        return ToolCall(id=call_id, name=name, arguments_error=f"Invalid JSON in tool arguments: {e}")
    if not isinstance(args, dict):
        return ToolCall(id=call_id, name=name, arguments_error="Tool arguments must be a JSON object")
    return ToolCall(id=call_id, name=name, arguments=args)


def build_user_prompt(html: str, file_path: str, analysis: Any = None) -> str:
    if analysis is not None:
        analysis_block = "ACCESSIBILITY ANALYSIS FROM THE TOOL SERVER:\n" + json.dumps(analysis, indent=2)
    else:
        analysis_block = "No prior analysis available - use the tools or analyze the HTML directly."
    return (
        f"Analyze this HTML file for accessibility issues.\n\nFILE: {file_path}\n\n"
        f"{analysis_block}\n\nHTML CONTENT:\n```html\n{html}\n```\n\n{FIX_PLAN_INSTRUCTIONS}"
    )


class ConversationLoop:
    """Bounded exchange between an LLM client and the accessibility tools.

    Each step sends the full transcript; every tool call in a reply is executed
    in order and answered with exactly one tool message before the next step.
    """

    def __init__(self, client: LLMClient, invoker: ToolInvoker, max_iterations: int = 5):
        if max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        self.client = client
        self.invoker = invoker
        self.max_iterations = max_iterations

    def run(
        self,
        user_prompt: str,
        system_prompt: str = SYSTEM_PROMPT,
        deadline: Optional[float] = None,
    ) -> ConversationResult:
        transcript: List[ConversationMessage] = [
            ConversationMessage(role="system", content=system_prompt),
            ConversationMessage(role="user", content=user_prompt),
        ]
        iteration = 0
        rounds = 0
        while iteration < self.max_iterations:
            if deadline is not None and time.monotonic() >= deadline:
                raise ConversationCancelled(list(transcript))
            iteration += 1
            logger.info("Conversation iteration %d/%d", iteration, self.max_iterations)
            try:
                reply = self.client.complete([m.to_llm() for m in transcript], TOOL_SCHEMAS)
            except Exception as e:
                raise LLMCallError(f"LLM request failed: {e}", list(transcript)) from e
            transcript.append(
                ConversationMessage(role="assistant", content=reply.content, tool_calls=reply.tool_calls)
            )
            if not reply.tool_calls:
                logger.info("LLM provided final analysis")
                return ConversationResult(
                    final_text=reply.content or "",
                    tool_call_rounds=rounds,
                    transcript=transcript,
                )
            rounds += 1
            for call in reply.tool_calls:
                transcript.append(
                    ConversationMessage(role="tool", tool_call_id=call.id, content=self._execute(call))
                )

        logger.warning("Conversation stopped after %d iterations", self.max_iterations)
        return ConversationResult(
            final_text=MAX_ITERATIONS_TEXT,
            tool_call_rounds=rounds,
            transcript=transcript,
            exhausted=True,
        )

    def _execute(self, call: ToolCall) -> str:
        if call.arguments_error:
            payload: Any = ToolError(error=call.arguments_error)
        else:
            payload = self.invoker.invoke(call.name, call.arguments)
        if isinstance(payload, ToolError):
            payload = payload.model_dump()
        return json.dumps(payload, indent=2, default=str)

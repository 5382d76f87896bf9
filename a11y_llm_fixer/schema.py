import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .utils import extract_json_object

logger = logging.getLogger(__name__)

FIX_TYPES = {"color-contrast", "alt-text", "aria", "form", "heading", "other"}


class ContrastPolicy(str, Enum):
    """What to do with a color fix whose new colors fail the contrast check."""
    SKIP = "skip"
    APPLY = "apply"


class ContrastResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    contrast_ratio: float = Field(alias="contrastRatio")
    passes: bool
    wcag_aa: bool = Field(alias="wcagAA")
    wcag_aaa: bool = Field(alias="wcagAAA")


class ToolCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: Dict[str, Any] = {}
    # Set when the LLM sent an argument string that is not a JSON object
    arguments_error: Optional[str] = None


class ToolError(BaseModel):
    error: str


class ToolResult(BaseModel):
    call_id: str
    payload: Any


class ConversationMessage(BaseModel):
    """One transcript entry. Frozen: the transcript is append-only."""
    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant", "tool"]
    content: Optional[str] = None
    tool_calls: List[ToolCall] = []
    tool_call_id: Optional[str] = None

    def to_llm(self) -> Dict[str, Any]:
        """Render in the OpenAI chat format expected by litellm."""
        msg: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.role == "assistant" and self.tool_calls:
            msg["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
                }
                for tc in self.tool_calls
            ]
        if self.role == "tool":
            msg["tool_call_id"] = self.tool_call_id
        return msg


class AssistantReply(BaseModel):
    content: Optional[str] = None
    tool_calls: List[ToolCall] = []


class ConversationResult(BaseModel):
    final_text: str
    tool_call_rounds: int
    transcript: List[ConversationMessage]
    exhausted: bool = False


class Fix(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str = "other"
    description: str = ""
    original_code: str = Field("", alias="originalCode")
    fixed_code: str = Field("", alias="fixedCode")
    explanation: str = ""

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, v):
        # Unknown categories from the LLM collapse to 'other'
        t = (v or "other").strip().lower() if isinstance(v, str) else "other"
        return t if t in FIX_TYPES else "other"


class FixPlan(BaseModel):
    summary: str = ""
    fixes: List[Fix] = []


class FixOutcome(BaseModel):
    fix: Fix
    applied: bool
    strategy: Optional[Literal["exact", "color-fallback"]] = None
    reason: Optional[str] = None


class ApplyResult(BaseModel):
    content: str
    outcomes: List[FixOutcome] = []

    @property
    def applied_count(self) -> int:
        return sum(1 for o in self.outcomes if o.applied)


class FileResult(BaseModel):
    path: str
    original_violations: Optional[int] = None
    remaining_violations: Optional[int] = None
    summary: str = ""
    fixes_proposed: int = 0
    fixes_applied: int = 0
    changed: bool = False
    backup_path: Optional[str] = None
    tool_call_rounds: int = 0
    exhausted: bool = False
    outcomes: List[FixOutcome] = []
    error: Optional[str] = None


class RunRecord(BaseModel):
    run_id: str
    created_at: datetime
    model: str
    settings: Dict[str, Any]
    files: List[FileResult] = []
    # Set when the run was aborted by an LLM failure
    error: Optional[str] = None


def parse_fix_plan(text: str) -> FixPlan:
    """Parse the LLM's final answer into a FixPlan.

    Degrades to an empty plan (with the problem in ``summary``) rather than raising.
    """
    raw = extract_json_object(text or "")
    if raw is None:
        logger.warning("No JSON object found in LLM answer")
        return FixPlan(summary="No JSON in response")
    try:
        return FixPlan.model_validate_json(raw)
    except ValidationError as e:
        logger.warning("LLM fix plan did not validate: %s", e)
        return FixPlan(summary="Invalid fix plan JSON")

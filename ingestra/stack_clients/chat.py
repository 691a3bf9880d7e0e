"""Best-effort model assistance for workers.

ModelAssist wraps an optional ChatClient. With no client configured, or when
the client raises or returns something unparseable, each helper returns a
neutral default instead of failing the run.
"""

import json
import logging
import re
from typing import Any, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


def neutral_quality() -> dict[str, Any]:
    return {"score": 0.5, "issues": ["Could not evaluate quality"]}


_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_OBJECT_OR_ARRAY_RE = re.compile(r"\{[\s\S]*\}|\[[\s\S]*\]")


@runtime_checkable
class ChatClient(Protocol):
    """Protocol for a chat/completion capability."""

    def complete(
        self,
        messages: list[dict[str, str]],
        temperature: float = 0.3,
        max_tokens: int = 500,
    ) -> str:
        """Return the assistant's reply text for a list of role/content messages."""
        ...


def _dump(value: Any, limit: int) -> str:
    return json.dumps(value, indent=2, default=str)[:limit]


class ModelAssist:
    """Planning, parsing and quality-scoring helpers over an optional ChatClient."""

    def __init__(self, client: Optional[ChatClient] = None):
        self.client = client

    @property
    def available(self) -> bool:
        return self.client is not None

    def _ask(self, prompt: str, temperature: float, max_tokens: int) -> Optional[str]:
        if self.client is None:
            return None
        try:
            return self.client.complete(
                [{"role": "user", "content": prompt}],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except Exception:
            logger.warning("Model call failed, using neutral default", exc_info=True)
            return None

    def plan_extraction(
        self,
        data: Any,
        schema: Optional[str] = None,
        lessons: Optional[list[str]] = None,
    ) -> str:
        """Suggest an extraction plan for a data sample. Returns "" when unavailable."""
        prompt = (
            "You are an ETL planning assistant. Analyze the following data and suggest "
            "the best extraction strategy.\n\n"
            f"Data sample:\n{_dump(data, 2000)}\n\n"
        )
        if schema:
            prompt += f"Target schema:\n{schema}\n\n"
        prompt += f"Previous lessons learned:\n{chr(10).join(lessons or []) or 'None'}\n\n"
        prompt += (
            "Provide a brief extraction plan with:\n"
            "1. Key fields to extract\n"
            "2. Transformations needed\n"
            "3. Potential issues to watch for"
        )
        return self._ask(prompt, temperature=0.3, max_tokens=500) or ""

    def parse_structured(self, text: str, target_structure: str) -> Optional[Any]:
        """Parse free text into JSON matching target_structure. Returns None on failure."""
        prompt = (
            "Parse the following data into the specified JSON structure.\n\n"
            f"Data:\n{text[:3000]}\n\n"
            f"Target structure:\n{target_structure}\n\n"
            "Return ONLY valid JSON matching the target structure. No explanation."
        )
        reply = self._ask(prompt, temperature=0.1, max_tokens=2000)
        if not reply:
            return None
        match = _OBJECT_OR_ARRAY_RE.search(reply)
        if not match:
            return None
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError:
            logger.warning("Model returned invalid JSON for structured parse")
            return None

    def evaluate_quality(self, extracted: Any, expected: Any = None) -> dict[str, Any]:
        """Score extracted data 0..1 with a list of issues."""
        prompt = (
            "Evaluate the quality of this extracted data.\n\n"
            f"Extracted data:\n{_dump(extracted, 2000)}\n\n"
        )
        if expected is not None:
            prompt += f"Expected format:\n{_dump(expected, 1000)}\n\n"
        prompt += (
            "Rate the extraction quality from 0.0 to 1.0 and list any issues.\n"
            'Return JSON: { "score": 0.0-1.0, "issues": ["issue1", "issue2"] }'
        )
        reply = self._ask(prompt, temperature=0.1, max_tokens=500)
        if not reply:
            return neutral_quality()
        match = _OBJECT_RE.search(reply)
        if not match:
            return neutral_quality()
        try:
            parsed = json.loads(match.group(0))
            score = min(max(float(parsed["score"]), 0.0), 1.0)
            issues = [str(i) for i in parsed.get("issues", [])]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.warning("Model returned an unusable quality evaluation")
            return neutral_quality()
        return {"score": score, "issues": issues}

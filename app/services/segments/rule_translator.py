"""
Natural-language rule translator.

Turns a plain-English audience description ("customers who spent over 500
and haven't visited in 90 days") into a rule tree using a text generator.
The generated tree is treated exactly like user input: it goes through the
same parsing and predicate compilation, so a model that invents a field or
an operator is rejected with the usual rule error.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Optional

import httpx

from app.config import settings
from app.exceptions import ExternalServiceError, ValidationError
from app.services.ai_gateway import TextGenerator
from app.services.segments.fields import FIELD_DEFINITIONS, OPERATOR_LABELS
from app.services.segments.rule_evaluator import RuleEvaluator
from app.services.segments.rule_tree import RuleNode


logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

SYSTEM_PROMPT = """You convert customer audience descriptions into JSON segment rules.
Respond with a single JSON object and nothing else.

A rule is either a condition:
  {"field": <field>, "operator": <operator>, "value": <value>}
or a group:
  {"type": "AND" | "OR", "conditions": [<rule>, ...]}

Available fields:
%s

Value formats:
- number fields take a number
- date fields take an ISO-8601 date for before/after, "start,end" for between,
  and a whole number of days for daysAgo (matches dates older than N days)
- string fields take a string and are case-sensitive
"""


def build_system_prompt() -> str:
    """Describe the field registry to the model."""
    lines = []
    for definition in FIELD_DEFINITIONS.values():
        operators = ", ".join(
            f"{name} ({OPERATOR_LABELS[name].lower()})" for name in sorted(definition.operators)
        )
        lines.append(
            f"- {definition.name} ({definition.data_type.value}): {definition.description}. "
            f"Operators: {operators}"
        )
    return SYSTEM_PROMPT % "\n".join(lines)


def extract_json(text: str) -> Any:
    """Parse model output, tolerating a surrounding markdown code fence."""
    cleaned = _FENCE_RE.sub("", text.strip()).strip()
    return json.loads(cleaned)


class SegmentRuleTranslator:
    """Translate natural language into validated rule trees."""

    def __init__(
        self,
        generator: TextGenerator,
        timeout: Optional[float] = None,
        evaluator: Optional[RuleEvaluator] = None,
    ):
        self.generator = generator
        self.timeout = timeout if timeout is not None else settings.AI_TIMEOUT_SECONDS
        self.evaluator = evaluator or RuleEvaluator()

    async def translate(self, query: str) -> RuleNode:
        """
        Ask the generator for a rule and validate it.

        Raises:
            ValidationError: blank query
            ExternalServiceError: generator timed out, failed, or returned non-JSON
            RuleError subclasses: the generated rule is not valid
        """
        if not query or not query.strip():
            raise ValidationError(
                "Query is required",
                errors=[{"field": "query", "message": "required"}],
            )

        try:
            text = await asyncio.wait_for(
                self.generator.generate(query.strip(), system_prompt=build_system_prompt()),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Rule translation timed out after %.1fs", self.timeout)
            raise ExternalServiceError("AI", "rule generation timed out") from None
        except httpx.HTTPError as e:
            logger.warning(f"Rule translation request failed: {type(e).__name__}")
            raise ExternalServiceError("AI", "rule generation request failed") from e
        except ValueError as e:
            logger.warning(f"Rule translation got a malformed completion: {e}")
            raise ExternalServiceError("AI", "malformed completion response") from e

        try:
            payload = extract_json(text or "")
        except (json.JSONDecodeError, TypeError, AttributeError):
            logger.warning("Rule translation returned non-JSON output")
            raise ExternalServiceError("AI", "model did not return valid JSON") from None

        return self.evaluator.parse(payload)

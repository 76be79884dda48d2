from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from siteguard.schemas.analysis import AnalysisResult, Violation

logger = logging.getLogger(__name__)

FENCE_PATTERN = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?\s*```$", re.DOTALL | re.IGNORECASE)
OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)


def strip_code_fence(text: str) -> str:
    stripped = text.strip()
    match = FENCE_PATTERN.match(stripped)
    if match:
        return match.group(1).strip()
    return stripped


def _decode_object(text: str) -> dict:
    body = strip_code_fence(text)
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        match = OBJECT_PATTERN.search(body)
        if not match:
            raise
        payload = json.loads(match.group(0))
    if not isinstance(payload, dict):
        raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
    return payload


def _failure(raw_text: str, reason: str) -> AnalysisResult:
    return AnalysisResult(error=reason, violations=[], raw_response=raw_text)


def _valid_violations(items: Any) -> list[Violation]:
    """Keep the violations that validate on their own; drop the rest."""
    if not isinstance(items, list):
        return []
    kept = []
    for position, item in enumerate(items):
        try:
            kept.append(Violation.model_validate(item))
        except ValidationError as exc:
            logger.warning("Dropping malformed violation %d from partial AI response: %d error(s)", position, exc.error_count())
    return kept


def parse_analysis_response(raw_text: str | None) -> AnalysisResult:
    """Turn the model's raw text into an AnalysisResult.

    Never raises: undecodable or schema-violating output becomes a result with
    ``error`` set, no violations and the original text kept in ``raw_response``.
    An ``error`` reported by the model itself is kept alongside whatever valid
    violations it still supplied.
    """
    raw_text = raw_text or ""
    if not raw_text.strip():
        return _failure(raw_text, "AI response was empty.")

    try:
        payload = _decode_object(raw_text)
    except (json.JSONDecodeError, ValueError) as exc:
        logger.warning("AI response was not valid JSON: %s", exc)
        return _failure(raw_text, "AI response was not valid JSON.")

    payload.pop("rawResponse", None)
    payload.pop("raw_response", None)
    model_error = payload.get("error")
    if model_error is not None and not isinstance(model_error, str):
        payload["error"] = json.dumps(model_error)
    if model_error:
        payload["violations"] = _valid_violations(payload.get("violations"))

    try:
        result = AnalysisResult.model_validate(payload)
    except ValidationError as exc:
        logger.warning("AI response did not match the analysis schema: %d error(s)", exc.error_count())
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or "response"
        return _failure(raw_text, f"AI response did not match the expected schema ({location}: {first['msg']}).")

    result.raw_response = raw_text
    if result.has_error:
        logger.info("AI reported an error with %d partial violation(s): %s", len(result.violations), result.error)
    return result

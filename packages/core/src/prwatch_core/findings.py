"""Parsing of structured agent output.

Rubric agents answer with a JSON object (often wrapped in a markdown fence
and surrounded by prose):

    {"status": "CHANGES_REQUESTED", "summary": "...",
     "findings": [{"file": "a.py", "line": 12, "severity": "HIGH", "message": "..."}]}

Fix actions answer with ``{"commit": "<sha>", "summary": "..."}``.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*")
_COMMIT_RE = re.compile(r'\{[\s\S]*"commit"[\s\S]*\}')

DEFAULT_SEVERITY = "MEDIUM"


@dataclass
class Finding:
    """One issue reported by a rubric agent.

    ``line == 0`` marks a file-level finding. ``position`` is filled in once
    the finding has been resolved against the PR diff and stays None when no
    placement could be found.
    """

    file: str
    line: int
    severity: str
    message: str
    position: int | None = None


@dataclass
class ReviewResponse:
    status: str
    summary: str
    findings: list[Finding] = field(default_factory=list)

    @property
    def display_status(self) -> str:
        return self.status.replace("_", " ")


def _to_line(value) -> int:
    try:
        line = int(value or 0)
    except (TypeError, ValueError):
        return 0
    return max(line, 0)


def _to_finding(raw: dict) -> Finding:
    severity = str(raw.get("severity") or DEFAULT_SEVERITY).strip().upper()
    return Finding(
        file=str(raw.get("file") or "").strip(),
        line=_to_line(raw.get("line")),
        severity=severity or DEFAULT_SEVERITY,
        message=str(raw.get("message") or "").strip(),
    )


def parse_review_response(raw: str) -> ReviewResponse:
    """Parse a rubric agent's answer.

    Raises ValueError when no JSON object can be found, it does not decode,
    or it lacks ``status`` / a ``findings`` list.
    """
    cleaned = _FENCE_RE.sub("", raw).strip()
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end < start:
        raise ValueError("No JSON object found in agent response")

    try:
        parsed = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError as e:
        raise ValueError(f"Agent response is not valid JSON: {e}") from e

    if not isinstance(parsed, dict) or not parsed.get("status") or not isinstance(parsed.get("findings"), list):
        raise ValueError("Response missing required fields (status, findings)")

    findings = [_to_finding(f) for f in parsed["findings"] if isinstance(f, dict)]
    return ReviewResponse(
        status=str(parsed["status"]).strip().upper(),
        summary=str(parsed.get("summary") or "").strip(),
        findings=findings,
    )


def parse_commit_response(raw: str) -> dict:
    """Extract ``{"commit", "summary"}`` from a fix action's answer.

    Never raises: an answer without a usable JSON object is reported as
    commit ``"unknown"`` with the start of the raw text as summary.
    """
    match = _COMMIT_RE.search(raw)
    if match:
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            logger.debug("Commit response JSON did not decode: %s", match.group(0)[:200])
        else:
            if isinstance(parsed, dict):
                return {
                    "commit": str(parsed.get("commit") or "unknown"),
                    "summary": str(parsed.get("summary") or ""),
                }
    return {"commit": "unknown", "summary": raw[:200]}

"""Validation and repair of the model's semi-structured reply.

``repair_model_output`` never raises. Decoding escalates through:

1. strip code fences and leading prose, then ``json.loads``
2. outermost balanced object (string-aware), decoded as is and after
   common fixes (smart quotes, trailing commas)
3. a truncated reply is closed at progressively earlier cut points
4. a minimal skeleton

The decoded object is then checked for the four required sections, missing
ones are backfilled with placeholders, and derivable fields are inferred.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from ..core.errors import ResponseMalformedError
from ..core.numbers import parse_locale_number

log = logging.getLogger(__name__)

REQUIRED_SECTIONS = ("financial_indicators", "location_analysis", "security_analysis", "executive_summary")

# Keys some models answer with when they follow the Spanish data labels
SECTION_ALIASES = {
    "indicadoresFinancieros": "financial_indicators",
    "analisisUbicacion": "location_analysis",
    "analisisSeguridad": "security_analysis",
    "resumenEjecutivo": "executive_summary",
}

NET_FROM_GROSS = 0.75
DEFAULT_APPRECIATION = 3.5
DECISIONS = ("RECOMMENDED", "CONDITIONAL", "NOT_RECOMMENDED", "EVALUATE")
RISK_BY_DECISION = {
    "RECOMMENDED": "low",
    "CONDITIONAL": "moderate",
    "EVALUATE": "moderate",
    "NOT_RECOMMENDED": "high",
}

_FENCE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
_OPEN_FENCE = re.compile(r"```(?:json|JSON)?\s*")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_SMART_QUOTES = str.maketrans({"“": '"', "”": '"', "‘": "'", "’": "'"})
_MAX_CUTS = 60


def placeholder_sections() -> dict:
    return {
        "financial_indicators": {
            "monthly_cash_flow": None,
            "gross_yield": None,
            "net_yield": None,
            "cap_rate": None,
            "break_even": None,
            "expected_appreciation": DEFAULT_APPRECIATION,
        },
        "location_analysis": {
            "summary": "Location analysis not available.",
            "education": [],
            "commerce": [],
            "transport": [],
            "strengths": [],
        },
        "security_analysis": {
            "security_index": None,
            "summary": "Security analysis not available.",
            "notes": [],
        },
        "executive_summary": {
            # decision and risk_level are inferred after merging
            "decision": None,
            "justification": "Automated analysis incomplete; review the computed metrics.",
            "risk_level": None,
            "highlights": [],
            "final_recommendation": "Review the figures manually before deciding.",
        },
    }


@dataclass
class RepairResult:
    analysis: dict
    issues: list = field(default_factory=list)
    completeness: float = 0.0        # % of required sections present in the reply
    skeleton_used: bool = False
    quality_score: int = 0

    def to_dict(self) -> dict:
        return {
            "issues": list(self.issues),
            "completeness": self.completeness,
            "skeleton_used": self.skeleton_used,
            "quality_score": self.quality_score,
        }


# ----- decoding -----

def preprocess(raw: str) -> str:
    text = (raw or "").strip()
    fenced = _FENCE.search(text)
    if fenced:
        text = fenced.group(1).strip()
    else:
        opened = _OPEN_FENCE.search(text)
        if opened:
            text = text[opened.end():].strip()
    start = text.find("{")
    return text[start:] if start > 0 else text


def _scan(text: str) -> tuple[Optional[int], list, bool]:
    """Index closing the first top-level object, open-bracket stack, in-string flag."""
    stack: list = []
    in_string = escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append(ch)
        elif ch in "}]":
            if stack:
                stack.pop()
            if not stack:
                return i, [], False
    return None, stack, in_string


def _loads_dict(text: str) -> dict:
    try:
        value = json.loads(text)
    except (ValueError, RecursionError) as exc:
        # JSONDecodeError, integer digit limit, nesting too deep
        raise ResponseMalformedError(f"{type(exc).__name__}: {exc}") from exc
    if not isinstance(value, dict):
        raise ResponseMalformedError(f"top-level JSON is {type(value).__name__}, not an object")
    return value


def _with_fixes(text: str) -> dict:
    try:
        return _loads_dict(text)
    except ResponseMalformedError:
        pass
    fixed = _TRAILING_COMMA.sub(r"\1", text.translate(_SMART_QUOTES))
    return _loads_dict(fixed)


def close_truncated(fragment: str) -> str:
    """Close open strings and brackets of a cut-off JSON fragment."""
    _, stack, in_string = _scan(fragment)
    text = fragment + ('"' if in_string else "")
    text = re.sub(r'[,:]\s*$', "", text.rstrip())
    text = re.sub(r',\s*"[^"]*"\s*$', "", text) if stack and stack[-1] == "{" else text
    return text + "".join("}" if b == "{" else "]" for b in reversed(stack))


def decode(raw: str, issues: list) -> dict:
    """Best-effort decode. Raises ResponseMalformedError when nothing works."""
    text = preprocess(raw)
    try:
        return _loads_dict(text)
    except ResponseMalformedError:
        issues.append("reply is not plain JSON")

    start = text.find("{")
    if start < 0:
        raise ResponseMalformedError("no JSON object in reply")
    text = text[start:]

    end, _, _ = _scan(text)
    if end is not None:
        try:
            return _with_fixes(text[: end + 1])
        except ResponseMalformedError:
            issues.append("balanced object needed repairs beyond common fixes")
    else:
        issues.append("reply looks truncated")

    # Close the structure, cutting back to earlier commas until it decodes
    body = text[: end + 1] if end is not None else text
    cuts = [len(body)] + [m.start() for m in re.finditer(",", body)][::-1][:_MAX_CUTS]
    for cut in cuts:
        candidate = close_truncated(body[:cut])
        try:
            value = _with_fixes(candidate)
        except ResponseMalformedError:
            continue
        issues.append("closed a truncated structure")
        return value
    raise ResponseMalformedError("could not recover a JSON object")


# ----- validation -----

def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return parse_locale_number(str(value).replace("%", ""))


def normalize_decision(value: Any) -> Optional[str]:
    """Upper snake case decision, or None when it is not one of DECISIONS."""
    if not value or not isinstance(value, str):
        return None
    decision = re.sub(r"[\s-]+", "_", value.strip().upper())
    return decision if decision in DECISIONS else None


def quality_score(analysis: dict) -> int:
    fi = analysis.get("financial_indicators") or {}
    loc = analysis.get("location_analysis") or {}
    sec = analysis.get("security_analysis") or {}
    summary = analysis.get("executive_summary") or {}
    score = 0
    if (_number(fi.get("gross_yield")) or 0) > 0:
        score += 25
    if fi.get("monthly_cash_flow") is not None:
        score += 25
    if loc.get("education"):
        score += 15
    if loc.get("commerce"):
        score += 15
    if sec.get("security_index") is not None:
        score += 10
    if summary.get("final_recommendation"):
        score += 10
    return score


def _infer(analysis: dict, issues: list) -> None:
    fi = analysis["financial_indicators"]
    gross = _number(fi.get("gross_yield"))
    net = _number(fi.get("net_yield"))
    if net is None and gross is not None:
        net = round(gross * NET_FROM_GROSS, 2)
        fi["net_yield"] = net
        issues.append("inferred net_yield from gross_yield")
    if _number(fi.get("cap_rate")) is None and net is not None:
        fi["cap_rate"] = net
        issues.append("inferred cap_rate from net_yield")
    if _number(fi.get("expected_appreciation")) is None:
        fi["expected_appreciation"] = DEFAULT_APPRECIATION

    summary = analysis["executive_summary"]
    raw_decision = summary.get("decision")
    decision = normalize_decision(raw_decision)
    if decision is None:
        if raw_decision:
            issues.append(f"unknown decision {raw_decision!r} replaced with EVALUATE")
        decision = "EVALUATE"
    summary["decision"] = decision
    if not summary.get("risk_level"):
        summary["risk_level"] = RISK_BY_DECISION.get(decision, "moderate")
        issues.append("inferred risk_level from decision")


def repair_model_output(raw: str) -> RepairResult:
    issues: list = []
    skeleton_used = False
    try:
        decoded = decode(raw, issues)
    except Exception as exc:
        log.warning("model reply unrecoverable, using skeleton", extra={"error": str(exc)})
        issues.append(f"unrecoverable reply: {exc}")
        decoded = {}
        skeleton_used = True

    for alias, name in SECTION_ALIASES.items():
        if alias in decoded and name not in decoded:
            decoded[name] = decoded.pop(alias)

    placeholders = placeholder_sections()
    found = 0
    analysis = dict(decoded)
    for name in REQUIRED_SECTIONS:
        section = decoded.get(name)
        if isinstance(section, dict) and section:
            found += 1
            analysis[name] = {**placeholders[name], **section}
        else:
            if not skeleton_used:
                issues.append(f"missing section {name}")
            analysis[name] = placeholders[name]

    _infer(analysis, issues)
    result = RepairResult(
        analysis=analysis,
        issues=issues,
        completeness=round(found / len(REQUIRED_SECTIONS) * 100, 1),
        skeleton_used=skeleton_used,
        quality_score=quality_score(analysis),
    )
    if issues:
        log.info("model reply repaired", extra={"issues": issues, "completeness": result.completeness})
    return result

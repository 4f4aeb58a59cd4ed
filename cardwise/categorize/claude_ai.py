"""Claude AI MCC discovery for merchants the local strategies miss.

Sends a batch of merchant names to Claude and asks for an MCC code plus a
category label for each. Uses the claude_fn callback pattern
(system: str, prompt: str) -> str so tests can substitute a MagicMock.

Responses are never trusted as-is: malformed JSON, non-list payloads and
items with missing or non-numeric MCC codes are dropped with a log line,
and the caller re-validates every category through the canonicalizer.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Hints sent with each batch so Claude anchors on known codes
MAX_MCC_HINTS = 40


@dataclass
class OracleResult:
    """One merchant's answer from Claude."""
    merchant_name: str
    mcc_code: str
    confidence: float
    description: str = ""
    category: str = ""
    sub_category: str = ""
    reasoning: str = ""


SYSTEM_PROMPT = (
    "You are a payments expert who assigns ISO 18245 merchant category codes "
    "(MCC) to card transaction merchant names. For every merchant given, "
    "return your best MCC and the spending category it belongs to, choosing "
    "the category from the list provided.\n"
    "Return ONLY a JSON array. Each element must have these fields:\n"
    '  - "merchant_name": the merchant exactly as given\n'
    '  - "mcc_code": 4-digit MCC as a string\n'
    '  - "description": short MCC description\n'
    '  - "confidence": your confidence from 0.0 to 1.0\n'
    '  - "category": one category name from the list\n'
    '  - "sub_category": a subcategory name, or ""\n'
    '  - "reasoning": brief explanation (one sentence)\n'
    "Omit merchants you cannot identify. Return ONLY the JSON array, "
    "no other text."
)


def build_prompt(
    merchants: list[str],
    mcc_hints: dict[str, str] | None = None,
    category_names: list[str] | None = None,
) -> str:
    lines = ["Merchants:"]
    lines.extend(f"- {m}" for m in merchants)
    if category_names:
        lines.append("")
        lines.append(f"Available categories: {', '.join(category_names)}")
    if mcc_hints:
        lines.append("")
        lines.append("Known MCC codes:")
        for code, desc in list(sorted(mcc_hints.items()))[:MAX_MCC_HINTS]:
            lines.append(f"  {code}: {desc}")
    return "\n".join(lines)


def discover_batch(
    merchants: list[str],
    claude_fn,
    mcc_hints: dict[str, str] | None = None,
    category_names: list[str] | None = None,
) -> dict[str, OracleResult]:
    """Ask Claude about a batch of merchants.

    Args:
        merchants: Merchant names, as they appear on the statement.
        claude_fn: Callable (system: str, prompt: str) -> str.
        mcc_hints: Known code → description pairs to include in the prompt.
        category_names: Taxonomy names Claude should choose from.

    Returns:
        Mapping of the requested merchant name → OracleResult for every
        merchant Claude answered. Empty if the call or parsing failed.
    """
    if not merchants:
        return {}
    prompt = build_prompt(merchants, mcc_hints, category_names)
    try:
        response = claude_fn(SYSTEM_PROMPT, prompt)
    except Exception:
        logger.exception("Claude MCC discovery failed for batch of %d", len(merchants))
        return {}

    results = _parse_response(response or "")
    requested = {m.upper().strip(): m for m in merchants}
    out: dict[str, OracleResult] = {}
    for result in results:
        original = requested.get(result.merchant_name.upper().strip())
        if original is None:
            logger.warning(
                "Claude answered for unrequested merchant '%s'", result.merchant_name
            )
            continue
        out.setdefault(original, result)
    missing = len(merchants) - len(out)
    if missing:
        logger.info("Claude left %d of %d merchants unresolved", missing, len(merchants))
    return out


def _parse_response(response: str) -> list[OracleResult]:
    """Parse Claude's JSON response into results, dropping invalid items."""
    text = response.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        lines = [line for line in lines if not line.strip().startswith("```")]
        text = "\n".join(lines)

    if not text:
        logger.error("Empty Claude MCC discovery response")
        return []

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        logger.error("Failed to parse Claude MCC discovery response: %s", text[:200])
        return []

    if isinstance(data, dict):
        data = data.get("results", [])
    if not isinstance(data, list):
        logger.error("Claude response is not a list: %s", type(data))
        return []

    results: list[OracleResult] = []
    for item in data:
        parsed = _parse_item(item)
        if parsed is not None:
            results.append(parsed)
    return results


def _parse_item(item) -> OracleResult | None:
    if not isinstance(item, dict):
        logger.warning("Skipping non-object Claude result: %r", item)
        return None

    name = item.get("merchant_name") or item.get("merchantName")
    if not name or not isinstance(name, str):
        logger.warning("Skipping Claude result without merchant_name")
        return None

    code = str(item.get("mcc_code") or item.get("mccCode") or "").strip()
    if not code.isdigit() or len(code) > 4:
        logger.warning("Claude returned invalid MCC '%s' for %s", code, name)
        return None
    code = code.zfill(4)

    try:
        confidence = float(item.get("confidence", 0.5))
    except (TypeError, ValueError):
        confidence = 0.5
    confidence = max(0.0, min(1.0, confidence))

    return OracleResult(
        merchant_name=name,
        mcc_code=code,
        confidence=confidence,
        description=str(item.get("description") or ""),
        category=str(item.get("category") or ""),
        sub_category=str(item.get("sub_category") or item.get("subCategory") or ""),
        reasoning=str(item.get("reasoning") or ""),
    )

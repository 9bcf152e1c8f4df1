from __future__ import annotations

import re
import unicodedata

PAGE_BREAK = "--- PAGE BREAK ---"

_NOISE_PATTERNS = [
    re.compile(r"\bPage \d+ of \d+\b", re.IGNORECASE),
    re.compile(r"עמוד \d+ מתוך \d+"),
    re.compile(r"Scanned (?:by|with) .*", re.IGNORECASE),
]
# Leftovers of table rulings: lines made only of rule characters
_RULE_LINE = re.compile(r"^[\s|_\-=~.:+*#—–]+$")


def sanitize_for_llm(text: str, max_chars: int, strip_top: int = 0, strip_bottom: int = 0) -> str:
    """Lightweight sanitizer that preserves line breaks for the LLM.

    Steps:
    1) Optional zoning: drop top/bottom lines to remove boilerplate.
    2) Line-wise NFKC normalization, whitespace folding, and removal of
       page counters and table-rule debris. Page break markers survive.
    3) Truncation at a newline boundary when possible.
    """
    lines = (text or "").splitlines()
    strip_top = max(0, strip_top)
    strip_bottom = max(0, strip_bottom)
    if len(lines) > (strip_top + strip_bottom + 5):  # avoid on very short docs
        lines = lines[strip_top : len(lines) - strip_bottom]

    kept = []
    for ln in lines:
        ln = unicodedata.normalize("NFKC", ln)
        ln = re.sub(r"[ \t\f\v]+", " ", ln).strip()
        if ln == PAGE_BREAK:
            kept.append(ln)
            continue
        for pat in _NOISE_PATTERNS:
            ln = pat.sub("", ln).strip()
        if ln and not _RULE_LINE.match(ln):
            kept.append(ln)
    out = "\n".join(kept)

    max_chars = max(1000, int(max_chars))
    if len(out) > max_chars:
        cut = out.rfind("\n", 0, max_chars)
        out = out[:cut] if cut != -1 else out[:max_chars]
    return out

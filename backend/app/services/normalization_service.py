"""Vulnerability normalization.

Turns the loosely-shaped vulnerability and fix records returned by the
analysis provider into the canonical shape stored on scan results:

- severity mapped onto critical/high/medium/low/info
- category taken from the record (snake_cased) or inferred from keywords
- CWE and OWASP classification inferred when missing
- line numbers parsed out of "12" / "12-15" style values
- duplicates removed and fixes attached to the findings they cover
"""

import logging
import re
from dataclasses import asdict, dataclass
from typing import Any

logger = logging.getLogger(__name__)

SEVERITY_MAP = {
    "critical": "critical",
    "high": "high",
    "medium": "medium",
    "low": "low",
    "info": "info",
}
DEFAULT_SEVERITY = "medium"
DEFAULT_CONFIDENCE = 0.8
DEFAULT_TITLE = "Security Issue"

# Checked in order; first match wins
CATEGORY_KEYWORDS: list[tuple[tuple[str, ...], str]] = [
    (("sql injection",), "sql_injection"),
    (("xss", "cross-site scripting"), "xss"),
    (("authentication", "auth"), "authentication"),
    (("authorization", "access control"), "authorization"),
    (("injection",), "injection"),
    (("csrf",), "csrf"),
    (("crypto", "encryption"), "cryptography"),
    (("input validation", "validation"), "input_validation"),
]

CWE_KEYWORDS: list[tuple[tuple[str, ...], str]] = [
    (("sql injection",), "CWE-89"),
    (("xss", "cross-site scripting"), "CWE-79"),
    (("csrf",), "CWE-352"),
    (("authentication",), "CWE-287"),
    (("authorization",), "CWE-285"),
    (("eval", "arbitrary code execution"), "CWE-95"),
    (("command injection",), "CWE-78"),
    (("injection",), "CWE-74"),
    (("path traversal",), "CWE-22"),
    (("deserialization",), "CWE-502"),
    (("crypto", "encryption"), "CWE-327"),
    (("input validation",), "CWE-20"),
]

OWASP_KEYWORDS: list[tuple[tuple[str, ...], str]] = [
    (("injection", "xss", "cross-site scripting"), "A03:2021 - Injection"),
    (("authentication",), "A07:2021 - Identification and Authentication Failures"),
    (("authorization", "access control", "path traversal"), "A01:2021 - Broken Access Control"),
    (("crypto", "encryption"), "A02:2021 - Cryptographic Failures"),
    (("eval",), "A04:2021 - Insecure Design"),
    (("deserialization",), "A08:2021 - Software and Data Integrity Failures"),
    (("input validation",), "A05:2021 - Security Misconfiguration"),
]
DEFAULT_OWASP = "A04:2021 - Insecure Design"

_INT_RE = re.compile(r"\d+")


@dataclass
class Vulnerability:
    """Canonical vulnerability record."""

    title: str
    description: str
    severity: str
    category: str
    line_number: int | None
    starting_line: int | None
    ending_line: int | None
    code_snippet: str | None
    cwe_id: str | None
    owasp_category: str | None
    confidence_score: float
    file_path: str
    fix_suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _match_keywords(text: str, table: list[tuple[tuple[str, ...], str]]) -> str | None:
    for keywords, value in table:
        if any(keyword in text for keyword in keywords):
            return value
    return None


def normalize_severity(value: Any) -> str:
    """Map a provider severity onto the fixed set; unknown values become medium."""
    if not isinstance(value, str):
        return DEFAULT_SEVERITY
    return SEVERITY_MAP.get(value.strip().lower(), DEFAULT_SEVERITY)


def parse_line_range(value: Any) -> tuple[int | None, int | None]:
    """Parse "12", "12-15" or 12 into a (start, end) pair."""
    if value is None or isinstance(value, bool):
        return None, None
    if isinstance(value, int):
        return value, value
    if isinstance(value, float):
        return int(value), int(value)
    numbers = [int(n) for n in _INT_RE.findall(str(value))]
    if not numbers:
        return None, None
    if len(numbers) == 1:
        return numbers[0], numbers[0]
    start, end = numbers[0], numbers[1]
    return (start, end) if start <= end else (end, start)


def _to_int(value: Any) -> int | None:
    start, _ = parse_line_range(value)
    return start


def _snake_case(value: str) -> str:
    cleaned = re.sub(r"[^0-9a-zA-Z]+", "_", value.strip().lower())
    return cleaned.strip("_")


class VulnerabilityNormalizer:
    """Normalizes, deduplicates and links provider findings."""

    def infer_category(self, text: str) -> str:
        return _match_keywords(text.lower(), CATEGORY_KEYWORDS) or "general"

    def infer_cwe(self, text: str) -> str | None:
        return _match_keywords(text.lower(), CWE_KEYWORDS)

    def infer_owasp(self, text: str) -> str:
        return _match_keywords(text.lower(), OWASP_KEYWORDS) or DEFAULT_OWASP

    def normalize(self, raw: dict[str, Any], file_path: str) -> Vulnerability:
        """Normalize a single raw vulnerability record."""
        title = str(raw.get("title") or DEFAULT_TITLE)
        description = str(raw.get("description") or "")
        search_text = f"{title} {description}"

        category_raw = raw.get("category")
        if isinstance(category_raw, str) and category_raw.strip():
            category = _snake_case(category_raw) or "general"
        else:
            category = self.infer_category(search_text)

        starting_line = _to_int(raw.get("startingLine", raw.get("starting_line")))
        ending_line = _to_int(raw.get("endingLine", raw.get("ending_line")))
        line_start, line_end = parse_line_range(raw.get("line", raw.get("line_number")))
        line_number = line_start if line_start is not None else starting_line
        if starting_line is None:
            starting_line = line_start
        if ending_line is None:
            ending_line = line_end if line_end is not None else starting_line

        snippet = raw.get("codeSnippet") or raw.get("snippet") or raw.get("code_snippet")

        return Vulnerability(
            title=title,
            description=description,
            severity=normalize_severity(raw.get("severity")),
            category=category,
            line_number=line_number,
            starting_line=starting_line,
            ending_line=ending_line,
            code_snippet=str(snippet) if snippet else None,
            cwe_id=raw.get("cweId") or raw.get("cwe_id") or self.infer_cwe(search_text),
            owasp_category=(
                raw.get("owaspCategory") or raw.get("owasp_category") or self.infer_owasp(search_text)
            ),
            confidence_score=self._confidence(raw.get("confidenceScore", raw.get("confidence_score"))),
            file_path=file_path,
        )

    def _confidence(self, value: Any) -> float:
        try:
            score = float(value)
        except (TypeError, ValueError):
            return DEFAULT_CONFIDENCE
        return min(1.0, max(0.0, score))

    def normalize_all(self, raws: list[Any], file_path: str) -> list[Vulnerability]:
        """Normalize and deduplicate a list of raw records, first occurrence wins."""
        seen: set[tuple[str, str, str, int]] = set()
        vulnerabilities: list[Vulnerability] = []
        for raw in raws or []:
            if not isinstance(raw, dict):
                logger.debug("Skipping non-object vulnerability in %s: %r", file_path, raw)
                continue
            vulnerability = self.normalize(raw, file_path)
            key = self.dedupe_key(vulnerability)
            if key in seen:
                continue
            seen.add(key)
            vulnerabilities.append(vulnerability)
        return vulnerabilities

    @staticmethod
    def dedupe_key(vulnerability: Vulnerability) -> tuple[str, str, str, int]:
        line = vulnerability.line_number if vulnerability.line_number is not None else -1
        return (
            vulnerability.file_path,
            vulnerability.title.strip().lower(),
            vulnerability.category.strip().lower(),
            line,
        )

    def normalize_fixes(self, raws: list[Any]) -> list[dict[str, Any]]:
        """Keep well-formed fixes, deduplicated by (line, suggestion)."""
        seen: set[tuple[str, str]] = set()
        fixes: list[dict[str, Any]] = []
        for raw in raws or []:
            if not isinstance(raw, dict):
                continue
            suggestion = raw.get("suggestion")
            if not suggestion:
                continue
            line = "" if raw.get("line") is None else str(raw.get("line"))
            key = (line, str(suggestion))
            if key in seen:
                continue
            seen.add(key)
            fixes.append({"line": line, "suggestion": str(suggestion)})
        return fixes

    def attach_fixes(self, vulnerabilities: list[Vulnerability], fixes: list[dict[str, Any]]) -> None:
        """Set fix_suggestion on each vulnerability whose line a fix covers."""
        ranges = []
        for fix in fixes:
            start, end = parse_line_range(fix.get("line"))
            if start is not None:
                ranges.append((start, end, fix["suggestion"]))

        for vulnerability in vulnerabilities:
            if vulnerability.line_number is None:
                continue
            for start, end, suggestion in ranges:
                if start <= vulnerability.line_number <= end:
                    vulnerability.fix_suggestion = suggestion
                    break

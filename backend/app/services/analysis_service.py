"""AI security analysis of source files and pull request diffs."""

import json
import logging
import os
import re
from typing import Any

from app.exceptions import AdapterError, ParseError
from app.services.llm_service import LLMService

logger = logging.getLogger(__name__)

LANGUAGE_HINTS = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".py": "python",
    ".java": "java",
    ".php": "php",
    ".rb": "ruby",
    ".go": "go",
    ".rs": "rust",
    ".cpp": "cpp",
    ".c": "c",
    ".cs": "csharp",
    ".swift": "swift",
    ".kt": "kotlin",
    ".scala": "scala",
    ".sh": "bash",
    ".sql": "sql",
    ".html": "html",
    ".css": "css",
}

# Substrings in provider errors that mean "try again later", not "bad request"
UNAVAILABLE_MARKERS = ("quota", "429", "404", "not found", "resource_exhausted", "unavailable")

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?")

VULNERABILITY_SHAPE = """{
      "title": "Short descriptive title",
      "description": "Detailed explanation of the issue and where it is in the code",
      "severity": "Critical|High|Medium|Low",
      "line": "line number or range",
      "startingLine": "line number",
      "endingLine": "line number",
      "category": "injection|authentication|xss|csrf|eval|etc",
      "cweId": "CWE-XXX",
      "owaspCategory": "A01:2021 - Broken Access Control",
      "confidenceScore": 0.8
    }"""

FIX_SHAPE = """{
      "line": "line number or range",
      "suggestion": "Fix suggestion with a code example and why it works"
    }"""

FILE_PROMPT = """You are an expert application security auditor and code reviewer.
Analyze the following code from a security perspective. Focus on:
- Business logic flaws
- API vulnerabilities
- Broken authentication / authorization
- Injection or input validation issues
- SQL injection vulnerabilities
- Cross-site scripting (XSS)
- Cross-site request forgery (CSRF)
- Insecure direct object references
- Security misconfiguration
- Sensitive data exposure

Respond ONLY with valid JSON (no surrounding text, no markdown code blocks) with the shape:
{{
  "vulnerabilities": [
    {vulnerability}
  ],
  "fixes": [
    {fix}
  ]
}}

File: {file_path}
```{language}
{content}
```

Only include real security issues, not style or best practice suggestions."""

DIFF_PROMPT = """You are an expert application security auditor analyzing a pull request diff.
Classify security issues in the changed file into three groups:
- vulnerabilitiesAdded: NEW vulnerabilities introduced by the changes
- vulnerabilitiesFixed: vulnerabilities that the changes FIXED
- vulnerabilitiesUnchanged: EXISTING vulnerabilities that remain

Each vulnerability belongs to exactly one group.

Respond ONLY with valid JSON (no surrounding text, no markdown code blocks) with the shape:
{{
  "vulnerabilitiesAdded": [
    {vulnerability}
  ],
  "vulnerabilitiesFixed": [],
  "vulnerabilitiesUnchanged": [],
  "fixes": [
    {fix}
  ],
  "securityImpact": {{
    "overall": "improved|degraded|neutral",
    "newCriticalIssues": 0,
    "newHighIssues": 0,
    "fixedCriticalIssues": 0,
    "fixedHighIssues": 0,
    "recommendation": "approve|review|block"
  }}
}}

File content after the change: {file_path}
```{language}
{content}
```

Patch:
```diff
{patch}
```

Only include real security issues. Be specific about what changed."""

NEUTRAL_IMPACT = {
    "overall": "neutral",
    "newCriticalIssues": 0,
    "newHighIssues": 0,
    "fixedCriticalIssues": 0,
    "fixedHighIssues": 0,
    "recommendation": "review",
}


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences wrapped around a JSON payload."""
    return _FENCE_RE.sub("", text).replace("```", "").strip()


def _list_or_empty(value: Any) -> list:
    return value if isinstance(value, list) else []


class AnalysisService:
    """Security analysis backed by the Gemini model."""

    def __init__(self, llm_service: LLMService | None = None):
        self.llm_service = llm_service or LLMService()

    def _language(self, file_path: str) -> str:
        return LANGUAGE_HINTS.get(os.path.splitext(file_path)[1].lower(), "")

    async def _complete(self, prompt: str, file_path: str) -> tuple[dict[str, Any], dict[str, Any]]:
        if not self.llm_service.is_configured:
            raise AdapterError("GEMINI_API_KEY environment variable is not set")

        try:
            text, usage = await self.llm_service.generate_with_usage(prompt)
        except Exception as exc:
            message = str(exc)
            if any(marker in message.lower() for marker in UNAVAILABLE_MARKERS):
                raise AdapterError(f"Analysis provider unavailable: {message}") from exc
            raise AdapterError(f"AI analysis failed: {message}") from exc

        try:
            data = json.loads(strip_code_fences(text))
        except json.JSONDecodeError as exc:
            raise ParseError(f"AI response parsing failed for {file_path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ParseError(f"AI response for {file_path} is not a JSON object")

        metadata = {"model": self.llm_service.model, **usage}
        return data, metadata

    async def analyze(self, content: str, file_path: str) -> dict[str, Any]:
        """Analyze a whole file.

        Returns:
            {"vulnerabilities": [...], "fixes": [...], "metadata": {...}}

        Raises:
            AdapterError: provider unavailable
            ParseError: response was not the expected JSON
        """
        prompt = FILE_PROMPT.format(
            vulnerability=VULNERABILITY_SHAPE,
            fix=FIX_SHAPE,
            file_path=file_path,
            language=self._language(file_path),
            content=content,
        )
        data, metadata = await self._complete(prompt, file_path)

        if not isinstance(data.get("vulnerabilities"), list):
            raise ParseError(f"AI response for {file_path} is missing the vulnerabilities array")

        return {
            "vulnerabilities": data["vulnerabilities"],
            "fixes": _list_or_empty(data.get("fixes")),
            "metadata": metadata,
        }

    async def analyze_diff(self, content: str, file_path: str, patch: str) -> dict[str, Any]:
        """Analyze a changed file against its patch.

        Returns:
            {"vulnerabilities_added", "vulnerabilities_fixed",
             "vulnerabilities_unchanged", "fixes", "impact", "metadata"}
        """
        prompt = DIFF_PROMPT.format(
            vulnerability=VULNERABILITY_SHAPE,
            fix=FIX_SHAPE,
            file_path=file_path,
            language=self._language(file_path),
            content=content,
            patch=patch or "",
        )
        data, metadata = await self._complete(prompt, file_path)

        impact = data.get("securityImpact")
        return {
            "vulnerabilities_added": _list_or_empty(data.get("vulnerabilitiesAdded")),
            "vulnerabilities_fixed": _list_or_empty(data.get("vulnerabilitiesFixed")),
            "vulnerabilities_unchanged": _list_or_empty(data.get("vulnerabilitiesUnchanged")),
            "fixes": _list_or_empty(data.get("fixes")),
            "impact": impact if isinstance(impact, dict) else dict(NEUTRAL_IMPACT),
            "metadata": metadata,
        }

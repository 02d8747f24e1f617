"""
Post-processing annotation of findings through an OpenAI-compatible chat
completions endpoint.

The engine treats the annotator as optional: ``build_annotator`` returns
``None`` unless it is enabled and has credentials, and every failure of a
single call surfaces as ``AnnotationError`` for the orchestrator to record.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from webscan.errors import AnnotationError
from webscan.models import Finding

LOGGER = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4"

ANALYSIS_SYSTEM_PROMPT = (
    "You are a cybersecurity expert specializing in web application security and OWASP Top 10 "
    "vulnerabilities. Provide detailed, technical analysis of security vulnerabilities."
)
SUMMARY_SYSTEM_PROMPT = "You are a cybersecurity consultant providing executive summaries of security assessments."


def build_analysis_prompt(finding: Finding) -> str:
    lines = [
        "Analyze the following security vulnerability and provide a detailed analysis:",
        "",
        f"Title: {finding.title}",
        f"Description: {finding.description}",
        f"Severity: {finding.severity.value}",
        f"Category: {finding.category}",
        f"CWE ID: {finding.cwe_id or 'N/A'}",
        f"CVSS Score: {finding.cvss_score if finding.cvss_score is not None else 'N/A'}",
        f"Affected URL: {finding.affected_url}",
    ]
    if finding.affected_parameter:
        lines.append(f"Affected Parameter: {finding.affected_parameter}")
    if finding.proof_of_concept:
        lines.append(f"Proof of Concept: {finding.proof_of_concept}")
    lines += [
        "",
        "Please provide:",
        "1. A detailed explanation of the vulnerability",
        "2. Potential impact and business risk",
        "3. Attack scenarios",
        "4. Detailed remediation steps",
        "5. Best practices to prevent similar issues",
        "",
        "Keep the analysis professional and technical.",
    ]
    return "\n".join(lines)


def build_summary_prompt(findings: list[Finding]) -> str:
    summary = "\n".join(f"- {item.title} ({item.severity.value}): {item.description[:100]}..." for item in findings)
    return (
        "Analyze the following list of security vulnerabilities found in a web application scan and provide a "
        f"comprehensive executive summary:\n\n{summary}\n\nTotal vulnerabilities: {len(findings)}\n\n"
        "Please provide:\n"
        "1. Overall security posture assessment\n"
        "2. Critical issues that need immediate attention\n"
        "3. Risk level (Critical/High/Medium/Low)\n"
        "4. Priority recommendations\n"
        "5. Compliance implications (if any)\n\n"
        "Keep it concise and actionable for both technical and non-technical stakeholders."
    )


class ChatCompletionAnnotator:
    def __init__(
        self,
        api_key: str,
        api_base: str = DEFAULT_API_BASE,
        model: str = DEFAULT_MODEL,
        timeout: float = 15.0,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        client: httpx.Client | None = None,
    ) -> None:
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client or httpx.Client()

    def annotate(self, finding: Finding) -> str:
        return self._complete(ANALYSIS_SYSTEM_PROMPT, build_analysis_prompt(finding), self.max_tokens)

    def summarize(self, findings: list[Finding]) -> str:
        """Executive summary over a whole result set."""
        return self._complete(SUMMARY_SYSTEM_PROMPT, build_summary_prompt(findings), min(self.max_tokens, 800))

    def _complete(self, system_prompt: str, prompt: str, max_tokens: int) -> str:
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": max_tokens,
        }
        try:
            response = self._client.post(
                f"{self.api_base}/chat/completions",
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload: dict[str, Any] = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise AnnotationError(f"Annotation request failed: {exc}") from exc

        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise AnnotationError("Annotation response had no message content") from exc
        if not isinstance(content, str) or not content.strip():
            raise AnnotationError("Annotation response had no message content")
        return content.strip()

    def close(self) -> None:
        self._client.close()


def build_annotator(settings: dict[str, Any]) -> ChatCompletionAnnotator | None:
    config = settings.get("annotator", {})
    if not config.get("enabled"):
        return None
    api_key = config.get("api_key")
    if not api_key:
        LOGGER.warning("Annotator enabled but no API key configured; findings will not be annotated")
        return None
    return ChatCompletionAnnotator(
        api_key=api_key,
        api_base=config.get("api_base") or DEFAULT_API_BASE,
        model=config.get("model") or DEFAULT_MODEL,
        timeout=float(config.get("timeout_seconds", 15)),
        max_tokens=int(config.get("max_tokens", 1000)),
        temperature=float(config.get("temperature", 0.7)),
    )

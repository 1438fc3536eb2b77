"""Client for the hosted generative-AI text endpoint behind ``/api/ai/ask``."""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Callable, TypedDict

from .config import Settings
from .errors import InvalidInput, RateLimited, ServiceUnavailable, UpstreamError

logger = logging.getLogger("uvicorn.error")

SYSTEM_PROMPT = (
    "You are a helpful AI assistant for DevDostHub, a developer community platform. "
    "Give clear, concise, and beginner-friendly answers about "
    "technology, programming, cloud computing, AI/ML, and career advice. "
    "Keep responses under 300 words unless the user asks for more detail. "
    "IMPORTANT: Do NOT use any markdown formatting in your responses. "
    "No asterisks, no hashtags, no bold/italic markers, no bullet symbols. "
    "Use plain numbered lists (1. 2. 3.) and simple line breaks for structure. "
    "Write in clean, readable plain text only."
)
FALLBACK_ANSWER = "Sorry, I could not generate a response."


class HttpResult(TypedDict):
    status: int
    body: bytes


Transport = Callable[..., HttpResult]


def _json_bytes(payload: object) -> bytes:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def urllib_transport(
    *,
    method: str,
    url: str,
    headers: dict[str, str],
    body: bytes,
    timeout_s: float,
) -> HttpResult:
    req = urllib.request.Request(url, data=body, headers=headers, method=method)
    try:
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            return {"status": int(resp.status), "body": resp.read()}
    except urllib.error.HTTPError as exc:
        return {"status": int(exc.code), "body": exc.read() or b""}
    except (urllib.error.URLError, TimeoutError) as exc:
        raise UpstreamError(f"AI service is unreachable: {exc}") from exc


def _is_quota_error(status: int, body: bytes) -> bool:
    if status == 429:
        return True
    text = body.decode("utf-8", errors="replace").lower()
    return "quota" in text or "resource_exhausted" in text


def _extract_text(payload: dict) -> str:
    parts: list[str] = []
    for candidate in payload.get("candidates") or []:
        content = candidate.get("content") or {}
        for part in content.get("parts") or []:
            text = part.get("text")
            if text:
                parts.append(text)
        if parts:
            break
    return "".join(parts).strip()


@dataclass
class AIClient:
    """Wraps questions in the assistant persona and forwards them upstream.

    Built once at startup from :class:`~devdosthub.config.Settings`; a missing
    API key is only reported when a question is actually asked.
    """

    api_key: str
    model: str
    base_url: str
    timeout_s: float = 30.0
    transport: Transport = urllib_transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _endpoint(self) -> str:
        model = urllib.parse.quote(self.model, safe="-._")
        return f"{self.base_url.rstrip('/')}/models/{model}:generateContent"

    def ask(self, question: str | None) -> str:
        if not question or not question.strip():
            raise InvalidInput()
        if not self.configured:
            raise ServiceUnavailable()

        body = _json_bytes(
            {
                "contents": [
                    {
                        "role": "user",
                        "parts": [
                            {"text": f"{SYSTEM_PROMPT}\n\nUser question: {question}"}
                        ],
                    }
                ]
            }
        )
        result = self.transport(
            method="POST",
            url=self._endpoint(),
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "x-goog-api-key": self.api_key,
            },
            body=body,
            timeout_s=self.timeout_s,
        )
        status = result["status"]
        if status >= 400:
            logger.warning("AI upstream returned HTTP %s", status)
            if _is_quota_error(status, result["body"]):
                raise RateLimited()
            raise UpstreamError(f"AI service returned HTTP {status}")
        try:
            payload = json.loads(result["body"] or b"{}")
        except ValueError as exc:
            raise UpstreamError("AI service returned an unreadable response") from exc
        return _extract_text(payload) or FALLBACK_ANSWER


def build_ai_client(settings: Settings, *, transport: Transport | None = None) -> AIClient:
    client = AIClient(
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
        base_url=settings.gemini_base_url,
        timeout_s=settings.ai_timeout_seconds,
        transport=transport or urllib_transport,
    )
    if not client.configured:
        logger.warning("GEMINI_API_KEY is not set; /api/ai/ask will answer 500")
    return client

from __future__ import annotations

import base64
import json
import logging
import time
from typing import Any
from urllib import error as urlerror
from urllib import parse, request

from paperqc.infra.ports.llm import LLMPort

logger = logging.getLogger(__name__)

_GOOGLE_AI_BASE = "https://generativelanguage.googleapis.com/v1beta"
_MAX_PROMPT_CHARS = 24000
_MAX_SYSTEM_CHARS = 8000
_RETRYABLE_HTTP = frozenset({408, 429, 500, 502, 503, 504})
_SCHEMA_KEYS = ("description", "format", "enum")


def to_gemini_schema(node: Any) -> dict[str, Any]:
    """Convert a JSON-schema subset into Gemini's ``responseSchema`` dialect."""
    if not isinstance(node, dict):
        return {}

    out: dict[str, Any] = {}
    raw_type = node.get("type")
    types = raw_type if isinstance(raw_type, list) else [raw_type]
    names = [item.lower() for item in types if isinstance(item, str)]
    concrete = [item for item in names if item != "null"]
    if concrete:
        out["type"] = concrete[0].upper()
    if "null" in names or node.get("nullable") is True:
        out["nullable"] = True

    for key in _SCHEMA_KEYS:
        if key in node:
            out[key] = node[key]
    if isinstance(node.get("required"), list):
        out["required"] = [item for item in node["required"] if isinstance(item, str)]
    if isinstance(node.get("properties"), dict):
        out["properties"] = {key: to_gemini_schema(value) for key, value in node["properties"].items()}
    if isinstance(node.get("items"), dict):
        out["items"] = to_gemini_schema(node["items"])
    return out


class GeminiLLM(LLMPort):
    provider_name = "gemini"

    def __init__(self, *, api_key: str, model_name: str, timeout_seconds: int = 90, max_retries: int = 1):
        self.api_key = api_key
        self.model_name = model_name
        self.timeout_seconds = max(3, int(timeout_seconds))
        self.max_retries = max(0, int(max_retries))

    @staticmethod
    def _is_timeout_error(exc: Exception) -> bool:
        reason = getattr(exc, "reason", None)
        return isinstance(exc, TimeoutError) or isinstance(reason, TimeoutError) or "timed out" in str(exc).lower()

    @staticmethod
    def _generation_config(schema: dict[str, Any]) -> dict[str, Any]:
        # Audits are correctness checks: always request the most deterministic decoding.
        return {
            "temperature": 0,
            "responseMimeType": "application/json",
            "responseSchema": to_gemini_schema(schema),
        }

    def generate_structured(
        self,
        *,
        prompt: str,
        schema: dict[str, Any],
        system_prompt: str | None = None,
        model: str | None = None,
    ) -> Any:
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt[:_MAX_PROMPT_CHARS]}]}],
            "generationConfig": self._generation_config(schema),
        }
        return self._request_json(payload=payload, system_prompt=system_prompt, model=model)

    def generate_structured_from_media(
        self,
        *,
        prompt: str,
        schema: dict[str, Any],
        media_bytes: bytes,
        media_mime_type: str,
        system_prompt: str | None = None,
        model: str | None = None,
    ) -> Any:
        inline = {"mimeType": media_mime_type, "data": base64.b64encode(media_bytes).decode("ascii")}
        payload = {
            "contents": [
                {
                    "role": "user",
                    "parts": [{"inlineData": inline}, {"text": prompt[:_MAX_PROMPT_CHARS]}],
                }
            ],
            "generationConfig": self._generation_config(schema),
        }
        return self._request_json(payload=payload, system_prompt=system_prompt, model=model)

    def _post(self, req: request.Request) -> str:
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            retry = attempt < self.max_retries
            try:
                with request.urlopen(req, timeout=self.timeout_seconds) as resp:
                    return resp.read().decode("utf-8")
            except urlerror.HTTPError as exc:
                try:
                    detail = exc.read().decode("utf-8")
                except Exception:
                    detail = str(exc)
                if exc.code in _RETRYABLE_HTTP and retry:
                    logger.warning("Gemini HTTP %s, retrying (attempt %d/%d)", exc.code, attempt + 1, attempts)
                    time.sleep(min(6.0, 1.2 * (attempt + 1)))
                    continue
                raise RuntimeError(f"Gemini API error ({exc.code}): {detail}") from exc
            except (urlerror.URLError, TimeoutError) as exc:
                if self._is_timeout_error(exc) and retry:
                    logger.warning("Gemini request timed out, retrying (attempt %d/%d)", attempt + 1, attempts)
                    time.sleep(min(6.0, 1.2 * (attempt + 1)))
                    continue
                if self._is_timeout_error(exc):
                    raise RuntimeError(
                        f"Gemini API timeout after {attempts} attempts (timeout={self.timeout_seconds}s)."
                    ) from exc
                raise RuntimeError(f"Gemini API connection error: {exc}") from exc
        raise RuntimeError(f"Gemini API timeout after {attempts} attempts (timeout={self.timeout_seconds}s).")

    def _request_json(self, *, payload: dict[str, Any], system_prompt: str | None, model: str | None) -> Any:
        model_name = model or self.model_name
        url = (
            f"{_GOOGLE_AI_BASE}/models/{parse.quote(model_name)}:generateContent"
            f"?key={parse.quote(self.api_key)}"
        )
        body = dict(payload)
        body["systemInstruction"] = {
            "parts": [{"text": (system_prompt or "Return strict JSON only.")[:_MAX_SYSTEM_CHARS]}],
        }
        req = request.Request(
            url=url,
            method="POST",
            data=json.dumps(body).encode("utf-8"),
            headers={"Content-Type": "application/json"},
        )
        return parse_generate_content(self._post(req))


def parse_generate_content(raw_body: str) -> Any:
    parsed = json.loads(raw_body)
    candidates = parsed.get("candidates") or []
    if not candidates:
        raise RuntimeError("Gemini response has no candidates")

    parts = (candidates[0].get("content") or {}).get("parts") or []
    if not parts:
        raise RuntimeError("Gemini response has no content parts")

    text = parts[0].get("text")
    if not isinstance(text, str) or not text.strip():
        raise RuntimeError("Gemini response part does not contain JSON text")

    data = json.loads(text)
    if not isinstance(data, (dict, list)):
        raise RuntimeError("Gemini structured output is not a JSON object or array")
    return data

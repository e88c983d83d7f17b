"""
RouteAudit - AI agent integration helpers.
Provider-agnostic wrappers used by the test planner and the remediation service.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional

import httpx

SUPPORTED_PROVIDERS = {"gemini", "openai", "ollama", "custom"}
DEFAULT_PROVIDER = "gemini"

PROVIDER_DEFAULTS: Dict[str, Dict[str, str]] = {
    "gemini": {
        "endpoint": "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
        "model": "gemini-2.0-flash",
    },
    "openai": {
        "endpoint": "https://api.openai.com/v1/chat/completions",
        "model": "gpt-4o-mini",
    },
    "ollama": {
        "endpoint": "http://127.0.0.1:11434/api/generate",
        "model": "llama3.1:8b",
    },
    "custom": {
        "endpoint": "",
        "model": "",
    },
}


def default_ai_agent_config() -> Dict[str, Any]:
    """Return default AI integration configuration."""
    return {
        "enabled": False,
        "provider": DEFAULT_PROVIDER,
        "endpoint": "",
        "model": "",
        "api_key": "",
        "plan_tests": True,
        "generate_solutions": True,
        "timeout_seconds": 20,
        "temperature": 0.1,
        "max_solutions_per_run": 50,
    }


TRUE_STRINGS = ("1", "true", "yes", "on")
FALSE_STRINGS = ("0", "false", "no", "off", "")


def coerce_bool(value: Any) -> bool:
    """Parse a config flag. Strings must spell a boolean; anything else uses truthiness."""
    if isinstance(value, str):
        text = value.strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
        raise ValueError(f"not a boolean: {value!r}")
    return bool(value)


def _flag(src: Dict[str, Any], base: Dict[str, Any], key: str, default: bool) -> bool:
    try:
        return coerce_bool(src.get(key, base.get(key, default)))
    except ValueError:
        return default


def normalize_ai_agent_config(raw: Optional[Dict[str, Any]], existing: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Normalize and merge AI settings from partial payloads."""
    base = default_ai_agent_config()
    if isinstance(existing, dict):
        base.update({k: existing.get(k) for k in base.keys() if k in existing})

    src = raw if isinstance(raw, dict) else {}

    provider = str(src.get("provider", base["provider"]) or base["provider"]).strip().lower()
    if provider not in SUPPORTED_PROVIDERS:
        provider = DEFAULT_PROVIDER

    endpoint = str(src.get("endpoint", base.get("endpoint", "")) or "").strip()
    model = str(src.get("model", base.get("model", "")) or "").strip()

    incoming_key = src.get("api_key", None)
    if isinstance(incoming_key, str) and incoming_key.strip():
        api_key = incoming_key.strip()
    else:
        api_key = str(base.get("api_key", "") or "")

    timeout_seconds = src.get("timeout_seconds", base.get("timeout_seconds", 20))
    try:
        timeout_seconds = float(timeout_seconds)
    except (TypeError, ValueError):
        timeout_seconds = 20.0
    timeout_seconds = max(1.0, min(timeout_seconds, 120.0))

    temperature = src.get("temperature", base.get("temperature", 0.1))
    try:
        temperature = float(temperature)
    except (TypeError, ValueError):
        temperature = 0.1
    temperature = max(0.0, min(temperature, 1.0))

    max_solutions = src.get("max_solutions_per_run", base.get("max_solutions_per_run", 50))
    try:
        max_solutions = int(max_solutions)
    except (TypeError, ValueError):
        max_solutions = 50
    max_solutions = max(0, min(max_solutions, 500))

    return {
        "enabled": _flag(src, base, "enabled", False),
        "provider": provider,
        "endpoint": endpoint,
        "model": model,
        "api_key": api_key,
        "plan_tests": _flag(src, base, "plan_tests", True),
        "generate_solutions": _flag(src, base, "generate_solutions", True),
        "timeout_seconds": timeout_seconds,
        "temperature": temperature,
        "max_solutions_per_run": max_solutions,
    }


def ai_agent_usable(cfg: Optional[Dict[str, Any]]) -> bool:
    """True when the config is enabled and carries what its provider needs to connect."""
    if not isinstance(cfg, dict) or not cfg.get("enabled"):
        return False
    provider = str(cfg.get("provider", "") or "").lower()
    if provider in ("gemini", "openai"):
        return bool(str(cfg.get("api_key") or "").strip())
    if provider == "custom":
        return bool(str(cfg.get("endpoint") or "").strip())
    return provider == "ollama"


class AIAgentError(Exception):
    """Raised when AI provider calls fail or return invalid data."""


class AIAgentClient:
    """Thin wrapper around provider-specific chat/generation APIs."""

    SYSTEM_PROMPT = (
        "You are a meticulous web security auditor focused on the OWASP Top 10 2021. "
        "You only answer with strict JSON, without markdown or commentary."
    )

    def __init__(self, http: Optional[httpx.AsyncClient] = None):
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(verify=False)

    async def close(self):
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "AIAgentClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def complete_json(self, cfg: Dict[str, Any], prompt: str, max_tokens: int = 1200) -> Dict[str, Any]:
        """Send a prompt and return the JSON object found in the model's answer."""
        content = await self._invoke_provider(cfg, prompt, max_tokens=max_tokens)
        data = _extract_json_obj(content)
        if not data:
            raise AIAgentError(f"Provider did not return a JSON object: {str(content)[:160]!r}")
        return data

    async def _invoke_provider(self, cfg: Dict[str, Any], prompt: str, max_tokens: int) -> str:
        provider = str(cfg.get("provider", "") or "").lower()
        timeout_s = float(cfg.get("timeout_seconds", 20) or 20)

        if provider not in SUPPORTED_PROVIDERS:
            raise AIAgentError(f"Unsupported provider: {provider}")

        if provider == "gemini":
            return await self._call_gemini(cfg, prompt, timeout_s)
        if provider == "openai":
            return await self._call_openai(cfg, prompt, max_tokens, timeout_s)
        if provider == "ollama":
            return await self._call_ollama(cfg, prompt, timeout_s)
        return await self._call_custom(cfg, prompt, timeout_s)

    async def _call_gemini(self, cfg: Dict[str, Any], prompt: str, timeout_s: float) -> str:
        defaults = PROVIDER_DEFAULTS["gemini"]
        model = cfg.get("model") or defaults["model"]
        key = str(cfg.get("api_key") or "").strip()
        if not key:
            raise AIAgentError("Gemini API key is required")

        endpoint = (cfg.get("endpoint") or defaults["endpoint"]).replace("{model}", model)
        headers = {"Content-Type": "application/json", "x-goog-api-key": key}
        payload = {
            "contents": [{"parts": [{"text": f"{self.SYSTEM_PROMPT}\n\n{prompt}"}]}],
            "generationConfig": {
                "temperature": float(cfg.get("temperature", 0.1) or 0.0),
                "responseMimeType": "application/json",
            },
        }
        data = await self._post_json(endpoint, headers, payload, timeout_s)
        return _extract_gemini_text(data)

    async def _call_openai(self, cfg: Dict[str, Any], prompt: str, max_tokens: int, timeout_s: float) -> str:
        defaults = PROVIDER_DEFAULTS["openai"]
        key = str(cfg.get("api_key") or "").strip()
        if not key:
            raise AIAgentError("OpenAI API key is required")

        headers = {"Authorization": f"Bearer {key}", "Content-Type": "application/json"}
        payload = {
            "model": cfg.get("model") or defaults["model"],
            "temperature": float(cfg.get("temperature", 0.1) or 0.0),
            "max_tokens": max_tokens,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": self.SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }
        data = await self._post_json(cfg.get("endpoint") or defaults["endpoint"], headers, payload, timeout_s)
        return _extract_openai_text(data)

    async def _call_ollama(self, cfg: Dict[str, Any], prompt: str, timeout_s: float) -> str:
        defaults = PROVIDER_DEFAULTS["ollama"]
        endpoint = (cfg.get("endpoint") or defaults["endpoint"]).rstrip("/")
        if not endpoint.endswith("/api/generate"):
            endpoint = endpoint + "/api/generate"

        payload = {
            "model": cfg.get("model") or defaults["model"],
            "prompt": f"{self.SYSTEM_PROMPT}\n\n{prompt}",
            "stream": False,
            "format": "json",
            "options": {"temperature": float(cfg.get("temperature", 0.1) or 0.0)},
        }
        data = await self._post_json(endpoint, {"Content-Type": "application/json"}, payload, timeout_s)
        text = data.get("response")
        if not isinstance(text, str) or not text.strip():
            raise AIAgentError("Ollama response did not contain a text payload")
        return text

    async def _call_custom(self, cfg: Dict[str, Any], prompt: str, timeout_s: float) -> str:
        endpoint = str(cfg.get("endpoint") or "").strip()
        if not endpoint:
            raise AIAgentError("Custom provider requires an endpoint URL")

        headers = {"Content-Type": "application/json"}
        key = str(cfg.get("api_key") or "").strip()
        if key:
            headers["Authorization"] = f"Bearer {key}"

        payload = {
            "model": cfg.get("model") or "",
            "system": self.SYSTEM_PROMPT,
            "prompt": prompt,
            "temperature": float(cfg.get("temperature", 0.1) or 0.0),
            "format": "json",
        }
        data = await self._post_json(endpoint, headers, payload, timeout_s)

        # Services that answer with the JSON document itself are accepted as-is
        for candidate_key in ("content", "text", "output", "response", "result"):
            val = data.get(candidate_key)
            if isinstance(val, str) and val.strip():
                return val
        return json.dumps(data, ensure_ascii=False)

    async def _post_json(self, endpoint: str, headers: Dict[str, str], payload: Dict[str, Any], timeout_s: float) -> Dict[str, Any]:
        try:
            resp = await self._http.post(endpoint, headers=headers, json=payload, timeout=timeout_s)
        except httpx.HTTPError as exc:
            raise AIAgentError(f"Connection failed: {exc}") from exc

        if resp.status_code >= 400:
            raise AIAgentError(f"Provider returned {resp.status_code}: {resp.text[:400]}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise AIAgentError(f"Invalid JSON response from provider: {exc}") from exc
        if not isinstance(data, dict):
            raise AIAgentError("Provider response is not a JSON object")
        return data


def _extract_openai_text(data: Dict[str, Any]) -> str:
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        raise AIAgentError("OpenAI response missing choices")

    content = (choices[0] or {}).get("message", {}).get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [p.get("text") for p in content if isinstance(p, dict) and isinstance(p.get("text"), str)]
        if parts:
            return "\n".join(parts)
    raise AIAgentError("OpenAI response did not include textual content")


def _extract_gemini_text(data: Dict[str, Any]) -> str:
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        raise AIAgentError("Gemini response missing candidates")

    parts = (candidates[0] or {}).get("content", {}).get("parts", [])
    if not isinstance(parts, list):
        raise AIAgentError("Gemini response has invalid content parts")

    texts = [p.get("text") for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
    if not texts:
        raise AIAgentError("Gemini response did not include text")
    return "\n".join(texts)


def _extract_json_obj(text: str) -> Dict[str, Any]:
    """Extract a JSON object from a model response.

    Models sometimes wrap JSON in markdown fences or prose. This tries direct parse,
    fenced JSON parse, and first-brace/last-brace extraction.
    """
    if not isinstance(text, str):
        return {}

    clean = text.strip()
    if not clean:
        return {}

    candidates = [clean]
    candidates.extend(re.findall(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```", clean, flags=re.IGNORECASE))
    first = clean.find("{")
    last = clean.rfind("}")
    if first != -1 and last != -1 and first < last:
        candidates.append(clean[first:last + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return {}

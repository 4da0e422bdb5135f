from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from . import logging as core_logging
from . import prompts

HEURISTIC_MAX_TASKS = 8
HEURISTIC_MAX_DESCRIPTION = 200
_SENTENCE_SPLIT = re.compile(r"\n|\.|;|\t")
RETRYABLE_STATUS = {429, 500, 502, 503, 504}


@dataclass
class LLMResponse:
    content: str


class LLMProviderError(Exception):
    pass


class TaskGenerationError(LLMProviderError):
    pass


class LLMProvider:
    def generate(self, prompt: str) -> LLMResponse:  # pragma: no cover - interface
        raise NotImplementedError


class MockLLMProvider(LLMProvider):
    """Deterministic extractor: one medium-priority task per transcript sentence."""

    def generate(self, prompt: str) -> LLMResponse:
        transcript = _transcript_from_prompt(prompt)
        return LLMResponse(content=json.dumps(heuristic_tasks(transcript)))


class FallbackLLMProvider(LLMProvider):
    def __init__(self, primary: LLMProvider, fallback: LLMProvider) -> None:
        self.primary = primary
        self.fallback = fallback

    def generate(self, prompt: str) -> LLMResponse:
        try:
            return self.primary.generate(prompt)
        except LLMProviderError as exc:
            core_logging.get_logger("llm_provider").warning(
                "llm_primary_failed_using_fallback", error=str(exc)
            )
            return self.fallback.generate(prompt)


class OpenAIProvider(LLMProvider):
    """Calls the OpenAI Responses API and returns the concatenated output text.

    Rate limits and 5xx answers are retried with capped exponential backoff, as
    are connection failures; anything else surfaces as ``LLMProviderError``.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://api.openai.com",
        temperature: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
        timeout_s: float = 30.0,
        max_retries: int = 0,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.endpoint = f"{base_url.rstrip('/')}/v1/responses"
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout_s = timeout_s
        self.max_retries = max(0, max_retries)

    def generate(self, prompt: str) -> LLMResponse:
        body = json.dumps(self._payload(prompt)).encode("utf-8")
        for attempt in range(self.max_retries + 1):
            last_attempt = attempt == self.max_retries
            try:
                raw = self._post(body)
            except HTTPError as exc:
                if exc.code in RETRYABLE_STATUS and not last_attempt:
                    _backoff(attempt)
                    continue
                detail = exc.read().decode("utf-8") if exc.fp else str(exc)
                raise LLMProviderError(f"OpenAI API error: {detail}") from exc
            except (URLError, TimeoutError) as exc:
                if not last_attempt:
                    _backoff(attempt)
                    continue
                raise LLMProviderError(f"OpenAI API connection error: {exc}") from exc
            try:
                text = _extract_output_text(json.loads(raw))
            except json.JSONDecodeError as exc:
                raise LLMProviderError(f"OpenAI API returned malformed body: {exc}") from exc
            if not text:
                raise LLMProviderError("No content in LLM response")
            return LLMResponse(content=text)
        raise LLMProviderError("OpenAI API request failed after retries")

    def _payload(self, prompt: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"model": self.model, "input": prompt}
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if self.max_output_tokens is not None:
            payload["max_output_tokens"] = self.max_output_tokens
        return payload

    def _post(self, body: bytes) -> str:
        request = Request(
            self.endpoint,
            data=body,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        with urlopen(request, timeout=self.timeout_s) as response:
            return response.read().decode("utf-8")


def _backoff(attempt: int) -> None:
    time.sleep(min(2**attempt, 8))


def resolve_provider(
    provider_name: str,
    *,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    base_url: Optional[str] = None,
    temperature: Optional[float] = None,
    max_output_tokens: Optional[int] = None,
    timeout_s: Optional[float] = None,
    max_retries: Optional[int] = None,
    fallback_enabled: bool = False,
) -> LLMProvider:
    name = (provider_name or "mock").lower()
    if name == "openai":
        if not api_key:
            raise ValueError("OPENAI_API_KEY is required when LLM_PROVIDER=openai")
        if not model:
            raise ValueError("OPENAI_MODEL is required when LLM_PROVIDER=openai")
        provider: LLMProvider = OpenAIProvider(
            api_key=api_key,
            model=model,
            base_url=base_url or "https://api.openai.com",
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            timeout_s=timeout_s or 30.0,
            max_retries=max_retries or 0,
        )
        if fallback_enabled:
            provider = FallbackLLMProvider(provider, MockLLMProvider())
        return provider
    return MockLLMProvider()


def generate_tasks(provider: LLMProvider, transcript: str) -> List[Any]:
    """Ask ``provider`` for tasks and return the raw, still untrusted, records."""
    response = provider.generate(prompts.task_extraction_prompt(transcript))
    return parse_task_array(response.content)


def parse_task_array(content: str) -> List[Any]:
    text = _extract_json(content or "")
    if not text:
        raise TaskGenerationError("LLM did not return valid JSON")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise TaskGenerationError("LLM did not return valid JSON") from exc
    if isinstance(data, dict) and isinstance(data.get("tasks"), list):
        data = data["tasks"]
    if not isinstance(data, list):
        raise TaskGenerationError("LLM response is not an array")
    return data


def heuristic_tasks(transcript: str) -> List[Dict[str, Any]]:
    parts = [part.strip() for part in _SENTENCE_SPLIT.split(transcript or "")]
    sentences = [part for part in parts if part][:HEURISTIC_MAX_TASKS]
    tasks = []
    for index, sentence in enumerate(sentences, start=1):
        if len(sentence) > HEURISTIC_MAX_DESCRIPTION:
            sentence = sentence[: HEURISTIC_MAX_DESCRIPTION - 3] + "..."
        tasks.append(
            {
                "id": f"task-{index}",
                "description": sentence,
                "priority": "medium",
                "dependencies": [],
            }
        )
    return tasks


def _transcript_from_prompt(prompt: str) -> str:
    marker = "Transcript:\n"
    index = prompt.find(marker)
    if index == -1:
        return prompt
    return prompt[index + len(marker) :]


def _extract_json(text: str) -> str:
    content = text.strip()
    if content.startswith("```"):
        parts = content.split("```")
        if len(parts) > 1:
            content = parts[1]
        content = content.lstrip()
        if content.startswith("json"):
            content = content[4:].lstrip()
    first_obj = content.find("{")
    first_arr = content.find("[")
    if first_obj == -1 and first_arr == -1:
        return ""
    if first_arr == -1 or (first_obj != -1 and first_obj < first_arr):
        start = first_obj
        end = content.rfind("}")
    else:
        start = first_arr
        end = content.rfind("]")
    if start == -1 or end == -1 or end <= start:
        return ""
    return content[start : end + 1]


def _extract_output_text(response: Dict[str, Any]) -> str:
    parts: list[str] = []
    for item in response.get("output", []):
        if item.get("type") != "message":
            continue
        for content in item.get("content", []):
            if content.get("type") == "output_text":
                parts.append(content.get("text", ""))
    return "".join(parts).strip()

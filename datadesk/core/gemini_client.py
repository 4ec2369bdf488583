# datadesk/core/gemini_client.py
from __future__ import annotations
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import google.generativeai as genai
from google.api_core.exceptions import ResourceExhausted

from datadesk.core.models import ChatMessage

logger = logging.getLogger(__name__)


class GenerationError(Exception):
    """The model call failed or produced nothing usable."""


class GenerationTimeout(GenerationError):
    pass


def strip_fences(s: str) -> str:
    return s.replace("```json", "").replace("```", "").strip()


def parse_json_object(text: str) -> Dict[str, Any]:
    try:
        data = json.loads(strip_fences(text))
    except json.JSONDecodeError as e:
        raise GenerationError(f"invalid JSON ({e.msg} at char {e.pos})") from e
    if not isinstance(data, dict):
        raise GenerationError("JSON response is not an object")
    return data


def to_gemini_contents(messages: Sequence[ChatMessage]) -> Tuple[Optional[str], List[Dict[str, Any]]]:
    """
    Split role-tagged messages into a system instruction and Gemini `contents`.
    Assistant turns become `model` turns; consecutive turns of the same role are merged.
    """
    system_parts = [m.content for m in messages if m.role == "system"]
    contents: List[Dict[str, Any]] = []
    for m in messages:
        if m.role == "system":
            continue
        role = "model" if m.role == "assistant" else "user"
        if contents and contents[-1]["role"] == role:
            contents[-1]["parts"].append(m.content)
        else:
            contents.append({"role": role, "parts": [m.content]})
    return ("\n\n".join(system_parts) or None), contents


def _response_text(resp: Any) -> str:
    # .text raises when the candidate was blocked or has no parts
    try:
        if getattr(resp, "text", None):
            return resp.text
    except ValueError:
        pass
    try:
        return resp.candidates[0].content.parts[0].text  # type: ignore[attr-defined]
    except (AttributeError, IndexError, TypeError):
        return ""


@dataclass
class GeminiClient:
    api_key: str
    model: str = "gemini-1.5-pro"
    # Fallback model used when rate limited or quota-exhausted.
    fallback_model: Optional[str] = "gemini-1.5-flash"
    default_timeout_s: float = 30.0

    def __post_init__(self) -> None:
        genai.configure(api_key=self.api_key)

    def _model(self, name: str, system_instruction: Optional[str]) -> genai.GenerativeModel:
        return genai.GenerativeModel(name, system_instruction=system_instruction)

    async def _try_generate(self, system_instruction: Optional[str], contents: List[Dict[str, Any]], generation_config: Dict[str, Any]):
        """Try primary model; on quota (429) fall back once to fallback model."""
        try:
            return await self._model(self.model, system_instruction).generate_content_async(
                contents, generation_config=generation_config
            )
        except ResourceExhausted:
            if not self.fallback_model or self.fallback_model == self.model:
                raise
            logger.warning("Model %s rate limited; retrying once on %s", self.model, self.fallback_model)
            return await self._model(self.fallback_model, system_instruction).generate_content_async(
                contents, generation_config=generation_config
            )

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        temperature: float = 0.2,
        max_output_tokens: int = 600,
        json_output: bool = False,
        timeout_s: Optional[float] = None,
    ) -> str:
        """
        Single completion for a role-tagged conversation.
        Raises GenerationTimeout when the call exceeds its bound (the in-flight request is cancelled)
        and GenerationError for API failures or empty content.
        """
        system_instruction, contents = to_gemini_contents(messages)
        if not contents:
            raise GenerationError("No user message to send")
        generation_config: Dict[str, Any] = {
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
        }
        if json_output:
            generation_config["response_mime_type"] = "application/json"

        timeout = timeout_s if timeout_s is not None else self.default_timeout_s
        try:
            resp = await asyncio.wait_for(
                self._try_generate(system_instruction, contents, generation_config),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise GenerationTimeout(f"model call timed out after {timeout:g}s") from e
        except Exception as e:  # noqa: BLE001 - google client raises a wide range of types
            raise GenerationError(f"model call failed: {e}") from e

        text = _response_text(resp).strip()
        if not text:
            raise GenerationError("empty response from model")
        return text

    async def complete_json(self, messages: Sequence[ChatMessage], **kwargs: Any) -> Dict[str, Any]:
        text = await self.complete(messages, json_output=True, **kwargs)
        return parse_json_object(text)

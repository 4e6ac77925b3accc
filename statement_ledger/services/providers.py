"""Transport clients for the two AI providers, plus the shared payload parsing."""
import base64
import json
import logging
import re
import time
from typing import Any, Optional, Sequence, Type, TypeVar

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from pydantic import BaseModel, ValidationError

from statement_ledger.exceptions import EmptyResponseError, MissingCredentialError, ParseError, ProviderHTTPError
from statement_ledger.models.schemas import ImagePart

logger = logging.getLogger("providers")

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE_RE = re.compile(r"```(?:json)?")


def strip_code_fences(text: str) -> str:
    """Remove every ```json / ``` marker (models sometimes wrap JSON mode output in markdown)."""
    return _FENCE_RE.sub("", text).strip()


def parse_json_payload(text: Optional[str]) -> Any:
    if not text or not text.strip():
        raise EmptyResponseError("Provider returned an empty response.")
    clean = strip_code_fences(text)
    try:
        return json.loads(clean)
    except json.JSONDecodeError as e:
        logger.error("parse_json_payload: invalid JSON (first 200 chars): %s", clean[:200])
        raise ParseError(f"Provider response is not valid JSON: {e}") from e


def parse_model(text: Optional[str], model: Type[ModelT]) -> ModelT:
    """Parse provider output and check it against `model`; any shape mismatch is a ParseError."""
    data = parse_json_payload(text)
    if not isinstance(data, dict):
        raise ParseError(f"Expected a JSON object for {model.__name__}, got {type(data).__name__}.")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ParseError(f"Provider response does not match {model.__name__}: {e}") from e


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return response.reason_phrase or response.text[:200]


class DeepSeekClient:
    """OpenAI-compatible chat completions over HTTP (text only, JSON-object mode)."""

    name = "DeepSeek"

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "deepseek-chat",
        base_url: str = "https://api.deepseek.com",
        timeout: float = 120.0,
        temperature: float = 0.1,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.temperature = temperature
        self.transport = transport

    async def complete(self, messages: list[dict[str, Any]], json_mode: bool = True) -> str:
        if not self.api_key:
            raise MissingCredentialError("DEEPSEEK_API_KEY is required for statement analysis.")
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "response_format": {"type": "json_object"} if json_mode else {"type": "text"},
            "stream": False,
        }
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"}
        t0 = time.perf_counter()
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(f"{self.base_url}/chat/completions", json=payload, headers=headers)
            except httpx.HTTPError as e:
                raise ProviderHTTPError(self.name, None, str(e)) from e
        if response.is_error:
            raise ProviderHTTPError(self.name, response.status_code, _error_message(response))
        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ParseError(f"{self.name} returned an unexpected body: {e}") from e
        logger.info("deepseek: %d messages -> %d chars (%.2f s)", len(messages), len(content or ""), time.perf_counter() - t0)
        return content or ""


class GeminiClient:
    """google-genai structured generation; accepts inline images and an explicit response schema."""

    name = "Gemini"

    def __init__(self, api_key: Optional[str], model: str = "gemini-2.5-flash", client: Optional[genai.Client] = None):
        self.api_key = api_key
        self.model = model
        self._client = client

    def _get_client(self) -> genai.Client:
        if self._client is None:
            if not self.api_key:
                raise MissingCredentialError("GEMINI_API_KEY is required for image reading and fallback analysis.")
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def generate(
        self,
        prompt: str,
        images: Sequence[ImagePart] = (),
        system_instruction: Optional[str] = None,
        response_schema: Optional[types.Schema] = None,
        temperature: Optional[float] = None,
    ) -> str:
        client = self._get_client()
        parts = [types.Part.from_text(text=prompt)]
        for img in images:
            parts.append(types.Part.from_bytes(data=base64.b64decode(img.data), mime_type=img.mime_type))
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=temperature,
            response_mime_type="application/json" if response_schema is not None else None,
            response_schema=response_schema,
        )
        t0 = time.perf_counter()
        try:
            response = await client.aio.models.generate_content(model=self.model, contents=parts, config=config)
        except genai_errors.APIError as e:
            raise ProviderHTTPError(self.name, e.code, e.message or str(e)) from e
        except httpx.HTTPError as e:
            raise ProviderHTTPError(self.name, None, str(e)) from e
        text = response.text or ""
        logger.info("gemini: %d images -> %d chars (%.2f s)", len(images), len(text), time.perf_counter() - t0)
        return text

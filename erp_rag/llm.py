"""Embedding and structured completion calls against Ollama.

``OllamaClient`` wraps one pooled ``httpx.AsyncClient`` and exposes the two
capabilities the pipeline consumes:

``embed(text)``
    A fixed-width vector for ``text``.  Transport errors, timeouts and 5xx
    responses are retried ``embed_retries`` times since the call has no side
    effects.

``complete(template, inputs, schema)``
    Renders ``template`` with ``inputs`` plus ``format_instructions``, asks
    the model for JSON constrained to ``schema`` and validates the reply.
    Anything that does not validate raises ``CompletionError``; it is never
    coerced.

The client is created once at start-up and passed to the pipeline
components, so tests substitute a fake with the same two coroutines.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from erp_rag.errors import CompletionError, UpstreamError

log = logging.getLogger("api.llm")

T = TypeVar("T", bound=BaseModel)


def format_instructions(schema: Type[BaseModel]) -> str:
    return (
        "Return ONLY a JSON object that conforms to this JSON schema "
        "(no markdown, no code fences, no extra keys, do not repeat the schema):\n"
        + json.dumps(schema.model_json_schema(), indent=2)
    )


class OllamaClient:
    """Client handle for Ollama's embeddings and chat APIs."""

    def __init__(
        self,
        host: str,
        embed_model: str,
        gen_model: str,
        *,
        llm_timeout: float = 60.0,
        embed_timeout: float = 20.0,
        embed_retries: int = 1,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.embed_model = embed_model
        self.gen_model = gen_model
        self.llm_timeout = llm_timeout
        self.embed_timeout = embed_timeout
        self.embed_retries = max(0, embed_retries)
        self._http = http or httpx.AsyncClient(base_url=host)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _post(self, path: str, payload: Dict[str, Any], timeout: float) -> httpx.Response:
        try:
            r = await self._http.post(path, json=payload, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise UpstreamError(f"Ollama {path} timed out after {timeout}s") from exc
        except httpx.TransportError as exc:
            raise UpstreamError(f"Ollama {path} unreachable: {exc}") from exc
        if r.status_code >= 400:
            raise UpstreamError(f"Ollama {path} returned HTTP {r.status_code}: {r.text[:300]}")
        return r

    # ---------- Embeddings ----------

    async def _embed_once(self, text: str) -> List[float]:
        # Use "prompt" for max compatibility across Ollama builds
        payload = {"model": self.embed_model, "prompt": text}
        r = await self._post("/api/embeddings", payload, self.embed_timeout)
        try:
            data = r.json()
        except ValueError as exc:
            raise UpstreamError(f"Ollama embeddings returned a non-JSON body: {r.text[:300]!r}") from exc

        if isinstance(data, dict):
            log.debug(f"Ollama embeddings response keys: {list(data.keys())}")
            if isinstance(data.get("embedding"), list) and data["embedding"]:
                return data["embedding"]
            if (
                isinstance(data.get("data"), list)
                and data["data"]
                and "embedding" in data["data"][0]
            ):
                return data["data"][0]["embedding"]
            if isinstance(data.get("embeddings"), list) and data["embeddings"]:
                return data["embeddings"][0]

        raise UpstreamError(f"Unexpected Ollama embeddings response: {str(data)[:300]}")

    async def embed(self, text: str) -> List[float]:
        attempts = 1 + self.embed_retries
        for attempt in range(1, attempts + 1):
            try:
                return await self._embed_once(text)
            except UpstreamError as exc:
                if attempt == attempts:
                    raise
                log.warning(f"Embedding attempt {attempt}/{attempts} failed, retrying: {exc}")

    # ---------- Structured completion ----------

    async def complete(
        self,
        template: str,
        inputs: Dict[str, Any],
        schema: Type[T],
        temperature: float = 0.0,
    ) -> T:
        prompt = template.format(**inputs, format_instructions=format_instructions(schema))
        payload = {
            "model": self.gen_model,
            "messages": [{"role": "user", "content": prompt}],
            "format": schema.model_json_schema(),
            "stream": False,
            "options": {"temperature": float(temperature or 0)},
        }
        r = await self._post("/api/chat", payload, self.llm_timeout)
        try:
            text = r.content.decode()
        except UnicodeDecodeError as exc:
            raise CompletionError(f"Completion for {schema.__name__} is not valid UTF-8") from exc

        result: List[str] = []
        for line in text.splitlines():
            if not line.strip():
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                # skip any malformed line
                continue
            # Ollama returns the answer in obj["message"]["content"],
            # or in obj["response"] (depending on version).
            if isinstance(obj, dict):
                message = obj.get("message")
                if isinstance(message, dict):
                    result.append(str(message.get("content") or ""))
                elif "response" in obj:
                    result.append(str(obj["response"] or ""))
        content = "".join(result).strip()
        if not content:
            raise CompletionError(f"Empty completion for {schema.__name__}")

        try:
            return schema.model_validate_json(content)
        except ValidationError as exc:
            log.warning(f"{schema.__name__} failed validation: {content[:300]}")
            raise CompletionError(f"Completion did not match {schema.__name__}: {exc}") from exc

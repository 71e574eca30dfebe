"""
Tests for OllamaClient against a mocked HTTP transport.

Run with: pytest tests/test_llm.py -v
"""

import asyncio
import json

import httpx
import pytest

from erp_rag.errors import CompletionError, UpstreamError
from erp_rag.llm import OllamaClient
from erp_rag.models import FilterOutput, RagQueryOutput


def _client(handler, **kw):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://ollama")
    return OllamaClient("http://ollama", "embed-model", "gen-model", http=http, **kw)


def _run(client, coro_fn):
    async def go():
        try:
            return await coro_fn(client)
        finally:
            await client.aclose()
    return asyncio.run(go())


class TestEmbed:

    def test_embedding_shapes(self):
        def handler(request):
            assert request.url.path == "/api/embeddings"
            assert json.loads(request.content) == {"model": "embed-model", "prompt": "copper"}
            return httpx.Response(200, json={"embedding": [0.1, 0.2, 0.3]})

        assert _run(_client(handler), lambda c: c.embed("copper")) == [0.1, 0.2, 0.3]

    def test_retries_once_on_server_error(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(503, text="loading model")
            return httpx.Response(200, json={"embeddings": [[1.0, 2.0]]})

        assert _run(_client(handler, embed_retries=1), lambda c: c.embed("x")) == [1.0, 2.0]
        assert len(calls) == 2

    def test_gives_up_after_retries(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UpstreamError):
            _run(_client(handler, embed_retries=1), lambda c: c.embed("x"))

    def test_unexpected_payload(self):
        def handler(request):
            return httpx.Response(200, json={"error": "no such model"})

        with pytest.raises(UpstreamError):
            _run(_client(handler, embed_retries=0), lambda c: c.embed("x"))

    @pytest.mark.parametrize("body", [b"<html>proxy error</html>", b"\xff\xfe\x00broken"])
    def test_non_json_body_is_upstream_error(self, body):
        def handler(request):
            return httpx.Response(200, content=body)

        with pytest.raises(UpstreamError):
            _run(_client(handler, embed_retries=0), lambda c: c.embed("x"))


class TestComplete:

    def test_structured_output(self):
        seen = {}

        def handler(request):
            body = json.loads(request.content)
            seen.update(body)
            content = json.dumps({"keep_chunk_ids": ["a", "b"]})
            return httpx.Response(200, json={"message": {"role": "assistant", "content": content}, "done": True})

        template = "Question: {question}\n{format_instructions}"
        out = _run(_client(handler), lambda c: c.complete(template, {"question": "q?"}, FilterOutput, 0.2))
        assert out == FilterOutput(keep_chunk_ids=["a", "b"])
        assert seen["stream"] is False
        assert seen["format"] == FilterOutput.model_json_schema()
        assert seen["options"]["temperature"] == 0.2
        assert seen["messages"][0]["content"].startswith("Question: q?")

    def test_streamed_lines_are_joined(self):
        def handler(request):
            lines = [
                json.dumps({"message": {"content": '{"rag_query": '}}),
                json.dumps({"message": {"content": '"copper wire"}'}}),
            ]
            return httpx.Response(200, text="\n".join(lines))

        out = _run(_client(handler), lambda c: c.complete("{format_instructions}", {}, RagQueryOutput))
        assert out.rag_query == "copper wire"

    @pytest.mark.parametrize("content", ["", "not json", json.dumps({"rag_query": ""})])
    def test_invalid_output_is_completion_error(self, content):
        def handler(request):
            return httpx.Response(200, json={"message": {"content": content}})

        with pytest.raises(CompletionError):
            _run(_client(handler), lambda c: c.complete("{format_instructions}", {}, RagQueryOutput))

    def test_server_error_is_upstream_error(self):
        def handler(request):
            return httpx.Response(500, text="boom")

        with pytest.raises(UpstreamError):
            _run(_client(handler), lambda c: c.complete("{format_instructions}", {}, RagQueryOutput))

    @pytest.mark.parametrize("body", [
        b"<html>proxy error</html>",
        b"\xff\xfe\x00broken",
        json.dumps({"message": "plain string"}).encode(),
    ])
    def test_unreadable_body_is_completion_error(self, body):
        def handler(request):
            return httpx.Response(200, content=body)

        with pytest.raises(CompletionError):
            _run(_client(handler), lambda c: c.complete("{format_instructions}", {}, RagQueryOutput))

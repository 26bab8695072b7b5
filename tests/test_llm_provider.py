"""Tests for the completion backends and their selection."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from pdfask import llm_provider
from pdfask.config import Settings
from pdfask.llm_provider import (
    DEFAULT_STUB_RESPONSE,
    InferenceLLM,
    LLMGenerationError,
    LLMNotReadyError,
    LLMStub,
    TransformersLLM,
    build_llm,
)


class FakeChatClient:
    def __init__(self, content: str | None = "  The answer (Doc: a.pdf — Page 1)  ") -> None:
        self.content = content
        self.calls: list[dict] = []

    def chat_completion(self, **kwargs):
        self.calls.append(kwargs)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FailingChatClient:
    def chat_completion(self, **kwargs):
        raise TimeoutError("upstream timeout")


def test_stub_returns_configured_message() -> None:
    stub = LLMStub()

    assert stub.generate("prompt", 10, 0.0) == DEFAULT_STUB_RESPONSE
    status = stub.status()
    assert status.model_loaded is False
    assert status.model_name == "stub"
    assert status.error


def test_inference_llm_sends_single_user_message() -> None:
    client = FakeChatClient()
    llm = InferenceLLM("org/model", client=client)

    answer = llm.generate("the prompt", 300, 0.0)

    assert answer == "The answer (Doc: a.pdf — Page 1)"
    assert client.calls == [
        {
            "messages": [{"role": "user", "content": "the prompt"}],
            "model": "org/model",
            "max_tokens": 300,
            "temperature": 0.0,
        }
    ]
    assert llm.status().device == "remote"


def test_inference_llm_wraps_client_errors() -> None:
    llm = InferenceLLM("org/model", client=FailingChatClient())

    with pytest.raises(LLMGenerationError, match="upstream timeout"):
        llm.generate("prompt", 10, 0.0)


def test_inference_llm_rejects_empty_choices() -> None:
    class NoChoicesClient:
        def chat_completion(self, **kwargs):
            return SimpleNamespace(choices=[])

    with pytest.raises(LLMGenerationError):
        InferenceLLM("org/model", client=NoChoicesClient()).generate("prompt", 10, 0.0)


def test_transformers_llm_reports_missing_runtime(monkeypatch: pytest.MonkeyPatch) -> None:
    import builtins

    real_import = builtins.__import__

    def blocked_import(name, *args, **kwargs):  # noqa: ANN001
        if name in {"torch", "transformers"}:
            raise ImportError(f"No module named {name!r}")
        return real_import(name, *args, **kwargs)

    monkeypatch.setattr(builtins, "__import__", blocked_import)
    llm = TransformersLLM("/models/missing")

    with pytest.raises(LLMNotReadyError):
        llm.generate("prompt", 10, 0.0)
    assert llm.model_loaded is False
    assert llm.last_error


def test_build_llm_defaults_to_stub_without_token() -> None:
    assert isinstance(build_llm(Settings(llm_provider=None, hf_token=None)), LLMStub)


def test_build_llm_defaults_to_inference_with_token(monkeypatch: pytest.MonkeyPatch) -> None:
    created: list[str] = []

    class FakeInferenceLLM(InferenceLLM):
        def __init__(self, model: str, *, token: str | None = None, client=None) -> None:  # noqa: ANN001
            created.append(model)
            super().__init__(model, token=token, client=FakeChatClient())

    monkeypatch.setattr(llm_provider, "InferenceLLM", FakeInferenceLLM)

    llm = build_llm(Settings(llm_provider=None, hf_token="hf_x", llm_model="org/chat"))

    assert isinstance(llm, FakeInferenceLLM)
    assert created == ["org/chat"]


def test_build_llm_rejects_unknown_provider() -> None:
    with pytest.raises(ValueError):
        build_llm(Settings(llm_provider="carrier-pigeon"))


def test_get_llm_is_cached(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(llm_provider, "get_settings", lambda: Settings(llm_provider="stub"))
    llm_provider.reset_llm_cache()
    try:
        first = llm_provider.get_llm()
        assert llm_provider.get_llm() is first
        assert llm_provider.get_llm_status().model_name == "stub"
    finally:
        llm_provider.reset_llm_cache()

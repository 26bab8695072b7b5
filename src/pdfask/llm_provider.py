"""Completion backends that turn an assembled prompt into an answer."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional

from pdfask.config import Settings, get_settings
from pdfask.telemetry import emit_llm_provider_init

LOGGER = logging.getLogger(__name__)

DEFAULT_STUB_RESPONSE = (
    "The language model is not configured. Set LLM_PROVIDER and HF_TOKEN to enable answers."
)


@dataclass(slots=True)
class LLMStatus:
    """Structured status information about the configured LLM backend."""

    model_loaded: bool
    model_name: str
    device: str
    error: Optional[str] = None


class LLMError(RuntimeError):
    """Base exception raised for LLM provider issues."""


class LLMNotReadyError(LLMError):
    """Raised when the model cannot be loaded or is unavailable."""


class LLMGenerationError(LLMError):
    """Raised when text generation fails unexpectedly."""


class LLM:
    """Common interface exposed by language model implementations."""

    def generate(self, prompt: str, max_tokens: int, temperature: float) -> str:
        """Generate a response for the provided prompt."""

        raise NotImplementedError

    @property
    def model_loaded(self) -> bool:
        """Return ``True`` when the backend can serve requests."""

        return False

    @property
    def model_name(self) -> str:
        """Human-readable identifier describing the model."""

        return "stub"

    @property
    def device(self) -> str:
        """Where inference happens (``cpu`` / ``cuda`` / ``remote``)."""

        return "cpu"

    @property
    def last_error(self) -> Optional[str]:
        """Return the most recent loading error, if any."""

        return None

    def preload(self) -> None:
        """Eagerly load the model weights when supported."""

        return None

    def status(self) -> LLMStatus:
        """Return structured diagnostic information for health checks."""

        return LLMStatus(
            model_loaded=self.model_loaded,
            model_name=self.model_name,
            device=self.device,
            error=self.last_error,
        )


class LLMStub(LLM):
    """Fallback implementation returning a fixed message."""

    def __init__(
        self,
        message: str = DEFAULT_STUB_RESPONSE,
        *,
        reason: str | None = None,
    ) -> None:
        self._message = message
        self._reason = reason or "LLM stub is active (model not configured)."

    def generate(self, prompt: str, max_tokens: int, temperature: float) -> str:
        return self._message

    @property
    def last_error(self) -> Optional[str]:
        return self._reason


class InferenceLLM(LLM):
    """Chat completion through the Hugging Face Inference API."""

    def __init__(self, model: str, *, token: Optional[str] = None, client: Any = None) -> None:
        self._model = model
        if client is None:
            from huggingface_hub import InferenceClient

            client = InferenceClient(api_key=token)
        self._client = client

    @property
    def model_loaded(self) -> bool:
        return True

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def device(self) -> str:
        return "remote"

    def generate(self, prompt: str, max_tokens: int, temperature: float) -> str:
        try:
            response = self._client.chat_completion(
                messages=[{"role": "user", "content": prompt}],
                model=self._model,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except Exception as error:
            raise LLMGenerationError(f"Inference API call failed: {error}") from error

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, KeyError, TypeError) as error:
            raise LLMGenerationError("Inference API returned no completion choices") from error
        return (content or "").strip()


class TransformersLLM(LLM):
    """Lazy-loading wrapper around a local ``AutoModelForCausalLM``."""

    def __init__(self, model_path: str) -> None:
        self._model_path = model_path
        self._model: Any = None
        self._tokenizer: Any = None
        self._lock = threading.RLock()
        self._load_error: Optional[Exception] = None
        self._device_label = "cpu"

    @property
    def model_loaded(self) -> bool:
        return self._model is not None

    @property
    def model_name(self) -> str:
        return self._model_path

    @property
    def device(self) -> str:
        return self._device_label

    @property
    def last_error(self) -> Optional[str]:
        if self._load_error is None:
            return None
        return str(self._load_error)

    def _ensure_loaded(self) -> None:
        if self._model is not None:
            return
        with self._lock:
            if self._model is not None:
                return

            try:
                import torch
                from transformers import AutoModelForCausalLM, AutoTokenizer
            except ImportError as error:
                self._load_error = error
                raise LLMNotReadyError(
                    "PyTorch/Transformers are not available in the current environment"
                ) from error

            use_cuda = torch.cuda.is_available()
            LOGGER.info("trying to load LLM from %s (cuda=%s)", self._model_path, use_cuda)
            try:
                model = AutoModelForCausalLM.from_pretrained(
                    self._model_path,
                    device_map="auto" if use_cuda else "cpu",
                    torch_dtype="auto" if use_cuda else torch.float32,
                    low_cpu_mem_usage=True,
                )
                tokenizer = AutoTokenizer.from_pretrained(self._model_path)
            except Exception as error:  # pragma: no cover - depends on hw/config
                self._load_error = error
                raise LLMNotReadyError("Failed to load the language model") from error

            if tokenizer.pad_token_id is None and tokenizer.eos_token_id is not None:
                tokenizer.pad_token_id = tokenizer.eos_token_id

            self._model = model
            self._tokenizer = tokenizer
            self._device_label = "cuda:0" if use_cuda else "cpu"
            self._load_error = None
            LOGGER.info("model loaded on %s", self._device_label)

    def generate(self, prompt: str, max_tokens: int, temperature: float) -> str:
        self._ensure_loaded()

        try:
            inputs = self._tokenizer(prompt, return_tensors="pt", truncation=True)
            inputs = inputs.to(self._model.device)
            output_ids = self._model.generate(
                **inputs,
                max_new_tokens=max_tokens if max_tokens > 0 else 256,
                temperature=max(0.0, float(temperature)) or None,
                do_sample=temperature > 0.0,
                pad_token_id=self._tokenizer.pad_token_id,
                eos_token_id=self._tokenizer.eos_token_id,
            )
            input_length = inputs["input_ids"].shape[1]
            text = self._tokenizer.decode(output_ids[0, input_length:], skip_special_tokens=True)
        except Exception as error:  # pragma: no cover - depends on runtime behaviour
            LOGGER.exception("LLM generation failed")
            raise LLMGenerationError("LLM generation failed") from error

        return text.strip()

    def preload(self) -> None:
        self._ensure_loaded()


_GLOBAL_LLM: Optional[LLM] = None


def build_llm(settings: Settings) -> LLM:
    """Instantiate the completion backend selected by ``settings``."""

    provider = settings.llm_provider
    if provider is None:
        provider = "inference" if settings.hf_token else "stub"

    if provider == "stub":
        LOGGER.warning("No completion backend configured; using stub responses.")
        llm: LLM = LLMStub(reason="LLM_PROVIDER is not configured and HF_TOKEN is missing.")
    elif provider == "inference":
        llm = InferenceLLM(settings.llm_model, token=settings.hf_token)
    elif provider == "transformers":
        llm = TransformersLLM(settings.llm_model_path or settings.llm_model)
    else:
        raise ValueError(f"Unsupported LLM provider: {provider}")

    emit_llm_provider_init(
        provider=provider,
        model=llm.model_name,
        ready=llm.model_loaded,
        max_tokens=settings.llm_max_tokens,
        temperature=settings.llm_temperature,
    )
    return llm


def get_llm() -> LLM:
    """Return the process-wide completion backend, creating it on first use."""

    global _GLOBAL_LLM

    if _GLOBAL_LLM is None:
        _GLOBAL_LLM = build_llm(get_settings())
    return _GLOBAL_LLM


def reset_llm_cache() -> None:
    global _GLOBAL_LLM
    _GLOBAL_LLM = None


def get_llm_status() -> LLMStatus:
    return get_llm().status()


__all__ = [
    "DEFAULT_STUB_RESPONSE",
    "InferenceLLM",
    "LLM",
    "LLMError",
    "LLMGenerationError",
    "LLMNotReadyError",
    "LLMStatus",
    "LLMStub",
    "TransformersLLM",
    "build_llm",
    "get_llm",
    "get_llm_status",
    "reset_llm_cache",
]

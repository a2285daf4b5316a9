from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Optional

import requests

from .errors import UpstreamError

log = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Answer briefly and plainly. "
    "Prefer the provided knowledge snippets when they are relevant."
)


class LLMBackend:
    """Blocking ``generate`` implementations are run off the event loop by ``complete``."""

    name = "llm"

    def __init__(self, system_prompt: str = DEFAULT_SYSTEM_PROMPT) -> None:
        self.system_prompt = system_prompt

    def generate(self, system_prompt: str, user_prompt: str) -> str:
        raise NotImplementedError

    async def complete(self, prompt: str, context: Optional[str] = None) -> str:
        user_prompt = f"{context}\n\n{prompt}" if context else prompt
        text = await asyncio.to_thread(self.generate, self.system_prompt, user_prompt)
        text = (text or "").strip()
        if not text:
            raise UpstreamError(self.name, "empty completion")
        return text


def _should_retry(err: Exception) -> bool:
    if isinstance(err, requests.HTTPError):
        resp = getattr(err, "response", None)
        if resp is None:
            return True
        code = getattr(resp, "status_code", 0) or 0
        return code == 429 or code >= 500
    return isinstance(err, requests.RequestException)


class OpenAICompatLLM(LLMBackend):
    """Chat-completions client for OpenAI-compatible endpoints (Groq by default)."""

    name = "openai-compat"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.groq.com/openai/v1",
        model: str = "llama-3.1-8b-instant",
        temperature: float = 0.7,
        max_tokens: int = 400,
        timeout: float = 20.0,
        retry_max: int = 3,
        retry_backoff_sec: float = 0.6,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ) -> None:
        super().__init__(system_prompt)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.retry_max = max(1, retry_max)
        self.retry_backoff_sec = retry_backoff_sec
        self._session = requests.Session()

    def generate(self, system_prompt: str, user_prompt: str) -> str:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        last_err: Optional[Exception] = None
        for attempt in range(1, self.retry_max + 1):
            try:
                r = self._session.post(
                    f"{self.base_url}/chat/completions",
                    headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
                    json={
                        "model": self.model,
                        "messages": messages,
                        "temperature": self.temperature,
                        "max_tokens": self.max_tokens,
                    },
                    timeout=self.timeout,
                )
                r.raise_for_status()
                try:
                    payload = r.json()
                except ValueError as e:
                    preview = (r.text or "")[:240].replace("\n", " ")
                    raise UpstreamError(self.name, f"non-JSON response: {preview}") from e
                choices = payload.get("choices") if isinstance(payload, dict) else None
                if not choices:
                    err = payload.get("error") if isinstance(payload, dict) else payload
                    raise UpstreamError(self.name, f"invalid payload: {err}")
                return choices[0]["message"]["content"]
            except requests.RequestException as e:
                last_err = e
                if attempt >= self.retry_max or not _should_retry(e):
                    break
                log.warning("llm retry %d/%d model=%s error=%s", attempt, self.retry_max, self.model, e)
                time.sleep(self.retry_backoff_sec * attempt)
        raise UpstreamError(self.name, f"request failed: {last_err}") from last_err


class LocalQwenLLM(LLMBackend):
    name = "local-qwen"

    def __init__(
        self,
        model_id: str,
        quantization: str = "int4",
        max_new_tokens: int = 256,
        temperature: float = 0.2,
        top_p: float = 0.9,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ) -> None:
        super().__init__(system_prompt)
        self.model_id = model_id
        self.quantization = quantization
        self.max_new_tokens = max_new_tokens
        self.temperature = temperature
        self.top_p = top_p
        self._model = None
        self._tokenizer = None

    def _ensure_model(self) -> None:
        if self._model is not None and self._tokenizer is not None:
            return
        import torch
        from transformers import AutoModelForCausalLM, AutoTokenizer, BitsAndBytesConfig  # type: ignore

        quant = (self.quantization or "").lower()
        bnb_config: Optional[BitsAndBytesConfig] = None
        if quant in {"int4", "4bit", "4-bit"}:
            bnb_config = BitsAndBytesConfig(
                load_in_4bit=True,
                bnb_4bit_compute_dtype=torch.float16,
                bnb_4bit_use_double_quant=True,
                bnb_4bit_quant_type="nf4",
            )
        elif quant in {"int8", "8bit", "8-bit"}:
            bnb_config = BitsAndBytesConfig(load_in_8bit=True)

        log.info("loading local model %s (%s)", self.model_id, quant or "fp16")
        self._tokenizer = AutoTokenizer.from_pretrained(self.model_id, trust_remote_code=True)
        self._model = AutoModelForCausalLM.from_pretrained(
            self.model_id,
            device_map="auto",
            torch_dtype=torch.float16,
            quantization_config=bnb_config,
            trust_remote_code=True,
        )
        self._model.eval()

    def generate(self, system_prompt: str, user_prompt: str) -> str:
        self._ensure_model()
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        tokenizer = self._tokenizer
        model = self._model
        if tokenizer is None or model is None:
            return ""
        input_ids = tokenizer.apply_chat_template(messages, add_generation_prompt=True, return_tensors="pt")
        input_ids = input_ids.to(model.device)
        outputs = model.generate(
            input_ids,
            max_new_tokens=self.max_new_tokens,
            do_sample=self.temperature > 0,
            temperature=self.temperature,
            top_p=self.top_p,
            eos_token_id=tokenizer.eos_token_id,
            pad_token_id=tokenizer.eos_token_id,
        )
        generated = outputs[0][input_ids.shape[-1]:]
        return tokenizer.decode(generated, skip_special_tokens=True).strip()


def build_llm(cfg: Dict[str, Any], api_key: str = "") -> Optional[LLMBackend]:
    """LLM backend for the ``llm`` config section, or None when disabled."""
    provider = (cfg.get("provider") or "none").lower()
    system_prompt = cfg.get("system_prompt", DEFAULT_SYSTEM_PROMPT)
    if provider in {"none", "off", "disabled"}:
        return None
    if provider in {"groq", "openai"}:
        if not api_key:
            log.warning("llm provider %s configured without an API key; LLM stage disabled", provider)
            return None
        return OpenAICompatLLM(
            api_key=api_key,
            base_url=cfg.get("base_url", "https://api.groq.com/openai/v1"),
            model=cfg.get("model", "llama-3.1-8b-instant"),
            temperature=cfg.get("temperature", 0.7),
            max_tokens=cfg.get("max_tokens", 400),
            timeout=cfg.get("request_timeout_sec", 20.0),
            retry_max=cfg.get("retry_max", 3),
            system_prompt=system_prompt,
        )
    if provider == "local":
        return LocalQwenLLM(
            model_id=cfg.get("model", "Qwen/Qwen2.5-7B-Instruct"),
            quantization=cfg.get("quantization", "int4"),
            max_new_tokens=cfg.get("max_new_tokens", 256),
            temperature=cfg.get("temperature", 0.2),
            top_p=cfg.get("top_p", 0.9),
            system_prompt=system_prompt,
        )
    raise ValueError(f"Unsupported llm provider: {provider}")

"""Configuration: config file, env overrides, logging."""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

DEFAULT_CONFIG_PATH = "config/pipeline.json"


def env(name: str, default: str = "") -> str:
    v = os.getenv(name, default)
    return v.strip() if isinstance(v, str) else v


# ── Logging ──
log = logging.getLogger("voicekb")
if not log.handlers:
    _h = logging.StreamHandler()
    _h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s", datefmt="%H:%M:%S"))
    log.addHandler(_h)
    log.setLevel(logging.DEBUG if os.getenv("VOICEKB_DEBUG") else logging.INFO)


def load_config(path: str) -> Dict[str, Any]:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    if config_path.suffix.lower() in {".json"}:
        with config_path.open("r", encoding="utf-8") as f:
            return json.load(f)

    if config_path.suffix.lower() in {".yml", ".yaml"}:
        with config_path.open("r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    raise ValueError(f"Unsupported config format: {config_path.suffix}")


def apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Let a handful of env vars win over the file (secrets and model choices)."""
    llm = config.setdefault("llm", {})
    if env("LLM_PROVIDER"):
        llm["provider"] = env("LLM_PROVIDER")
    if env("LLM_MODEL"):
        llm["model"] = env("LLM_MODEL")

    asr = config.setdefault("asr", {})
    for key, var in (("model", "ASR_MODEL"), ("device", "ASR_DEVICE"), ("compute_type", "ASR_COMPUTE"), ("language", "ASR_LANG")):
        if env(var):
            asr[key] = env(var)

    if env("TTS_VOICE"):
        config.setdefault("tts", {})["voice"] = env("TTS_VOICE")
    return config


def load_settings(path: Optional[str] = None, dotenv_path: Optional[str] = None) -> Dict[str, Any]:
    """Load ``.env``, then the config file (``VOICEKB_CONFIG`` or the default path)."""
    load_dotenv(dotenv_path)
    config_path = path or env("VOICEKB_CONFIG", DEFAULT_CONFIG_PATH)
    config = load_config(config_path)
    log.debug("loaded config from %s", config_path)
    return apply_env_overrides(config)


def llm_api_key() -> str:
    return env("GROQ_API_KEY") or env("OPENAI_API_KEY")

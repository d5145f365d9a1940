import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .errors import ConfigError

logger = logging.getLogger(__name__)


def load_config(path: str) -> Dict[str, Any]:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    if config_path.suffix.lower() in {".json"}:
        with config_path.open("r", encoding="utf-8") as f:
            return json.load(f)

    if config_path.suffix.lower() in {".yml", ".yaml"}:
        import yaml

        with config_path.open("r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    raise ValueError(f"Unsupported config format: {config_path.suffix}")


@dataclass(frozen=True)
class ServiceSettings:
    """Runtime settings for the resolution service, validated once at startup."""

    bots_dir: Path
    default_organization: str = "default"
    llm_model: str = ""
    llm_quantization: str = "int4"
    llm_max_new_tokens: int = 400
    llm_temperature: float = 0.7
    ai_timeout_sec: float = 8.0
    kb_timeout_sec: float = 3.0
    state_ttl_sec: float = 3600.0
    state_max_conversations: int = 10000
    log_level: str = "INFO"


def load_settings(path: Optional[str] = None, env_file: Optional[str] = ".env") -> ServiceSettings:
    """Build ServiceSettings from an optional config file plus environment overrides.

    The file uses sections ``bots``, ``llm``, ``timeouts`` and ``state``; any of
    BOTS_DIR, DEFAULT_ORG, LLM_MODEL, AI_TIMEOUT_SEC, KB_TIMEOUT_SEC, STATE_TTL_SEC,
    STATE_MAX_CONVERSATIONS and LOG_LEVEL in the environment win over the file.
    """
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    cfg: Dict[str, Any] = load_config(path) if path else {}
    bots_cfg = cfg.get("bots", {})
    llm_cfg = cfg.get("llm", {})
    timeouts_cfg = cfg.get("timeouts", {})
    state_cfg = cfg.get("state", {})

    try:
        settings = ServiceSettings(
            bots_dir=Path(os.getenv("BOTS_DIR") or bots_cfg.get("dir", "config/bots")),
            default_organization=os.getenv("DEFAULT_ORG") or bots_cfg.get("default_organization", "default"),
            llm_model=os.getenv("LLM_MODEL", llm_cfg.get("model_id", "")),
            llm_quantization=llm_cfg.get("quantization", "int4"),
            llm_max_new_tokens=int(llm_cfg.get("max_new_tokens", 400)),
            llm_temperature=float(llm_cfg.get("temperature", 0.7)),
            ai_timeout_sec=float(os.getenv("AI_TIMEOUT_SEC") or timeouts_cfg.get("ai_sec", 8.0)),
            kb_timeout_sec=float(os.getenv("KB_TIMEOUT_SEC") or timeouts_cfg.get("kb_sec", 3.0)),
            state_ttl_sec=float(os.getenv("STATE_TTL_SEC") or state_cfg.get("ttl_sec", 3600)),
            state_max_conversations=int(
                os.getenv("STATE_MAX_CONVERSATIONS") or state_cfg.get("max_conversations", 10000)
            ),
            log_level=(os.getenv("LOG_LEVEL") or cfg.get("log_level", "INFO")).upper(),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid service settings: {exc}") from exc

    if settings.ai_timeout_sec <= 0 or settings.kb_timeout_sec <= 0:
        raise ConfigError("Timeouts must be positive")
    if settings.state_max_conversations <= 0:
        raise ConfigError("state.max_conversations must be positive")
    return settings


def configure_logging(level_name: str = "INFO") -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    logging.getLogger("resolution").setLevel(level)
    logging.getLogger("chatapi").setLevel(level)

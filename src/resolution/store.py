import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

from .errors import ConfigError, ConfigStoreError
from .loader import load_bot_config
from .types import BotConfig

logger = logging.getLogger(__name__)

ORG_ID_RE = re.compile(r"^[A-Za-z0-9_.-]{1,128}$")
BOT_SUFFIXES = (".json", ".yaml", ".yml")


class BotConfigStore(Protocol):
    async def get(self, organization_id: Optional[str]) -> BotConfig:
        ...

    def organizations(self) -> List[str]:
        ...


class InMemoryBotConfigStore:
    def __init__(self, configs: Dict[str, BotConfig], default_organization: str = "default") -> None:
        self._configs = dict(configs)
        self.default_organization = default_organization

    async def get(self, organization_id: Optional[str]) -> BotConfig:
        config = self._configs.get(organization_id or self.default_organization)
        if config is None:
            config = self._configs.get(self.default_organization)
        if config is None:
            raise ConfigStoreError(f"No bot configuration for organization {organization_id!r}")
        return config

    def put(self, organization_id: str, config: BotConfig) -> None:
        self._configs[organization_id] = config

    def organizations(self) -> List[str]:
        return sorted(self._configs)


class FileBotConfigStore:
    """Loads one bot configuration file per organization from a directory.

    ``<dir>/<organization_id>.json`` (or .yaml/.yml). Unknown organizations use the
    default organization's file. Parsed configs are cached until the file changes.
    """

    def __init__(self, directory: Path, default_organization: str = "default") -> None:
        self.directory = Path(directory)
        self.default_organization = default_organization
        self._cache: Dict[Path, Tuple[float, BotConfig]] = {}

    async def get(self, organization_id: Optional[str]) -> BotConfig:
        org = organization_id or self.default_organization
        if not ORG_ID_RE.match(org):
            raise ConfigStoreError(f"Invalid organization id: {org!r}")

        path = self._find(org)
        if path is None and org != self.default_organization:
            logger.debug("No bot config for %s, using %s", org, self.default_organization)
            path = self._find(self.default_organization)
        if path is None:
            raise ConfigStoreError(f"No bot configuration for organization {org!r} in {self.directory}")
        return self._load(path)

    def organizations(self) -> List[str]:
        if not self.directory.is_dir():
            return []
        return sorted(p.stem for p in self.directory.iterdir() if p.suffix.lower() in BOT_SUFFIXES)

    def _find(self, org: str) -> Optional[Path]:
        for suffix in BOT_SUFFIXES:
            candidate = self.directory / f"{org}{suffix}"
            if candidate.exists():
                return candidate
        return None

    def _load(self, path: Path) -> BotConfig:
        try:
            mtime = path.stat().st_mtime
        except OSError as exc:
            raise ConfigStoreError(f"Bot configuration unreadable: {path}") from exc

        cached = self._cache.get(path)
        if cached and cached[0] == mtime:
            return cached[1]

        try:
            config = load_bot_config(str(path))
        except (OSError, ValueError, ConfigError) as exc:
            raise ConfigStoreError(f"Failed to load bot configuration {path}: {exc}") from exc
        self._cache[path] = (mtime, config)
        logger.info("Loaded bot config %s (%d QA entries, %d KB items)", path.name,
                    len(config.qa_database), len(config.knowledge_base))
        return config

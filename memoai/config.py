"""
LLM settings persistence and service wiring.

The persisted settings record (LLMSetting) is stored as a TOML file, by
default ~/.memoai/memoai.toml:

    provider = "ollama"
    enable_auto_tagging = true

    [ollama]
    host = "http://localhost:11434"
    default_model = "llama3.2"

    [openai]
    api_key = "sk-..."

ConfigManager turns a setting into registered providers on an LLMService
and back again.
"""

import dataclasses
import logging
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import httpx
import tomli_w

from .context import Context
from .errors import LLMError, ProviderNotConfiguredError
from .providers.base import create_provider
from .service import LLMService
from .tag_service import TagServiceConfig
from .types import LLMProviderSetting, ProviderConfig, ProviderType, default_config

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "memoai.toml"
CONFIG_ENV_VAR = "MEMOAI_CONFIG"
MASTER_KEY_ENV_VAR = "MEMOAI_MASTER_KEY"
HOME_ENV_VAR = "MEMOAI_HOME"

MASKED_KEY_PLACEHOLDER = "***masked***"

# Local first, then the cloud providers
FALLBACK_ORDER = (
    ProviderType.OLLAMA,
    ProviderType.OPENAI,
    ProviderType.ANTHROPIC,
    ProviderType.GEMINI,
)

_SECTIONS = ("openai", "anthropic", "gemini", "ollama")
_SECTION_FIELDS = ("api_key", "base_url", "default_model", "embedding_model", "host")


@dataclass
class LLMSetting:
    """
    The persisted LLM settings record.

    A None section means the provider family is not set up at all; a
    present section always produces a registered provider.
    """
    provider: Optional[ProviderType] = None
    openai: Optional[LLMProviderSetting] = None
    anthropic: Optional[LLMProviderSetting] = None
    gemini: Optional[LLMProviderSetting] = None
    ollama: Optional[LLMProviderSetting] = None
    enable_auto_tagging: bool = False
    enable_auto_summary: bool = False
    enable_semantic_search: bool = False

    def section(self, provider_type: ProviderType) -> Optional[LLMProviderSetting]:
        return getattr(self, ProviderType(provider_type).value)


def memoai_home() -> Path:
    """Directory for memoai state (config, logs): MEMOAI_HOME or ~/.memoai."""
    env = os.environ.get(HOME_ENV_VAR)
    return Path(env).expanduser() if env else Path.home() / ".memoai"


def default_config_path() -> Path:
    """Settings file path: MEMOAI_CONFIG, or memoai.toml under memoai_home()."""
    env = os.environ.get(CONFIG_ENV_VAR)
    if env:
        return Path(env).expanduser()
    return memoai_home() / CONFIG_FILENAME


def master_key_from_env() -> Optional[str]:
    """The vault master secret from MEMOAI_MASTER_KEY, if set."""
    return os.environ.get(MASTER_KEY_ENV_VAR) or None


# -----------------------------------------------------------------------------
# Dict / TOML codec
# -----------------------------------------------------------------------------

def _section_from_dict(data: dict) -> LLMProviderSetting:
    return LLMProviderSetting(**{k: str(data.get(k, "")) for k in _SECTION_FIELDS})


def _section_to_dict(section: LLMProviderSetting) -> dict:
    return {k: v for k, v in dataclasses.asdict(section).items() if v}


def setting_from_dict(data: dict[str, Any]) -> LLMSetting:
    """
    Build an LLMSetting from parsed TOML.

    Raises:
        ValueError: If the provider name is not a known ProviderType
    """
    provider = data.get("provider") or None
    if provider is not None:
        try:
            provider = ProviderType(provider)
        except ValueError:
            raise ValueError(f"Unknown provider in settings: {provider!r}") from None

    sections = {}
    for name in _SECTIONS:
        raw = data.get(name)
        if isinstance(raw, dict):
            sections[name] = _section_from_dict(raw)

    return LLMSetting(
        provider=provider,
        enable_auto_tagging=bool(data.get("enable_auto_tagging", False)),
        enable_auto_summary=bool(data.get("enable_auto_summary", False)),
        enable_semantic_search=bool(data.get("enable_semantic_search", False)),
        **sections,
    )


def setting_to_dict(setting: LLMSetting) -> dict[str, Any]:
    """Convert an LLMSetting to a TOML-serializable dict (no None values)."""
    data: dict[str, Any] = {}
    if setting.provider is not None:
        data["provider"] = str(setting.provider)
    data["enable_auto_tagging"] = setting.enable_auto_tagging
    data["enable_auto_summary"] = setting.enable_auto_summary
    data["enable_semantic_search"] = setting.enable_semantic_search
    for name in _SECTIONS:
        section = getattr(setting, name)
        if section is not None:
            data[name] = _section_to_dict(section)
    return data


def load_setting(path: Optional[Path] = None) -> Optional[LLMSetting]:
    """
    Load settings from a TOML file.

    Returns None if the file does not exist.

    Raises:
        ValueError: If the file is not valid TOML or names an unknown provider
    """
    path = Path(path) if path is not None else default_config_path()
    if not path.exists():
        logger.debug("No LLM settings at %s", path)
        return None

    with open(path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid settings file {path}: {e}") from e
    return setting_from_dict(data)


def save_setting(setting: LLMSetting, path: Optional[Path] = None) -> Path:
    """
    Save settings as TOML, creating the parent directory if needed.

    The file holds API keys, so it is written with owner-only permissions.
    """
    path = Path(path) if path is not None else default_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "wb") as f:
        tomli_w.dump(setting_to_dict(setting), f)
    path.chmod(0o600)
    return path


def detect_default_setting() -> LLMSetting:
    """
    Build a setting from the environment when no settings file exists.

    Cloud sections are added for each of OPENAI_API_KEY, ANTHROPIC_API_KEY
    and GEMINI_API_KEY (or GOOGLE_API_KEY) that is set. Ollama is always
    included, using OLLAMA_HOST if set.
    """
    setting = LLMSetting(
        ollama=LLMProviderSetting(host=os.environ.get("OLLAMA_HOST", "")),
    )
    if key := os.environ.get("OPENAI_API_KEY"):
        setting.openai = LLMProviderSetting(api_key=key)
    if key := os.environ.get("ANTHROPIC_API_KEY"):
        setting.anthropic = LLMProviderSetting(api_key=key)
    if key := os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY"):
        setting.gemini = LLMProviderSetting(api_key=key)
    return setting


# -----------------------------------------------------------------------------
# Settings-surface helpers
# -----------------------------------------------------------------------------

def redact_setting(setting: LLMSetting) -> LLMSetting:
    """Return a copy with every non-empty API key replaced by the placeholder."""
    sections = {}
    for name in _SECTIONS:
        section = getattr(setting, name)
        if section is not None and section.api_key:
            section = dataclasses.replace(section, api_key=MASKED_KEY_PLACEHOLDER)
        sections[name] = section
    return dataclasses.replace(setting, **sections)


def preserve_existing_api_keys(new: LLMSetting, existing: Optional[LLMSetting]) -> LLMSetting:
    """
    Carry stored API keys over into an incoming setting.

    A settings form that displays redacted keys sends back either the
    placeholder or an empty string for keys the user did not touch; those
    are replaced with the stored value.
    """
    if existing is None:
        return new

    sections = {}
    for name in _SECTIONS:
        incoming = getattr(new, name)
        stored = getattr(existing, name)
        if (
            incoming is not None
            and stored is not None
            and incoming.api_key in ("", MASKED_KEY_PLACEHOLDER)
        ):
            incoming = dataclasses.replace(incoming, api_key=stored.api_key)
        sections[name] = incoming
    return dataclasses.replace(new, **sections)


def tag_service_config_from_setting(setting: Optional[LLMSetting]) -> TagServiceConfig:
    """Derive the tag service config; tagging is on only if enabled in settings."""
    config = TagServiceConfig()
    config.enabled = bool(setting and setting.enable_auto_tagging)
    return config


# -----------------------------------------------------------------------------
# ConfigManager
# -----------------------------------------------------------------------------

def _provider_config(provider_type: ProviderType, section: LLMProviderSetting) -> ProviderConfig:
    """Per-type defaults overlaid with the non-empty fields of `section`."""
    overrides = {
        "api_key": section.api_key,
        "base_url": section.base_url,
        "default_model": section.default_model,
        "embedding_model": section.embedding_model,
        "ollama_host": section.host,
    }
    return dataclasses.replace(
        default_config(provider_type),
        **{name: value for name, value in overrides.items() if value},
    )


class ConfigManager:
    """
    Applies an LLMSetting to an LLMService and reads it back.

    Args:
        service: The registry to populate
        client: Optional httpx client shared by every provider created here
    """

    def __init__(self, service: LLMService, client: Optional[httpx.Client] = None):
        self.service = service
        self._client = client

    def load_from_setting(self, ctx: Context, setting: Optional[LLMSetting]) -> None:
        """
        Register a provider for every section present in `setting`, then
        activate the preferred provider or fall back.

        Failing to find any usable provider is logged, not raised, so a
        server can start without LLM features.
        """
        if setting is None:
            logger.debug("No LLM settings found, using defaults")
            return

        for provider_type in ProviderType:
            section = setting.section(provider_type)
            if section is None:
                continue
            provider = create_provider(_provider_config(provider_type, section), client=self._client)
            self.service.register_provider(provider)

        if setting.provider is None:
            return

        try:
            self.set_active_provider_with_fallback(ctx, setting.provider)
        except LLMError as e:
            logger.warning("No fallback provider available: %s", e)

    def to_setting(self) -> LLMSetting:
        """Snapshot the registered providers and active marker as a setting."""
        setting = LLMSetting()
        for status in self.service.list_providers():
            provider = self.service.get_provider_by_type(status.type)
            to_setting = getattr(provider, "to_setting", None)
            if to_setting is not None:
                setattr(setting, status.type.value, to_setting())
            if status.active:
                setting.provider = status.type
        return setting

    def set_active_provider_with_fallback(self, ctx: Context, provider_type: ProviderType) -> None:
        """
        Activate `provider_type` if it is registered and configured, else
        the first configured provider in FALLBACK_ORDER.

        Raises:
            ProviderNotConfiguredError: If no registered provider is configured
        """
        try:
            provider = self.service.get_provider_by_type(provider_type)
        except LLMError:
            provider = None

        if provider is not None and provider.is_configured(ctx):
            self.service.set_active_provider(provider_type)
            return

        logger.info("Requested provider %s not available, trying fallback", provider_type)
        self._try_fallback(ctx)

    def _try_fallback(self, ctx: Context) -> None:
        configured = {s.type for s in self.service.list_providers() if s.configured}
        for provider_type in FALLBACK_ORDER:
            if provider_type in configured:
                self.service.set_active_provider(provider_type)
                logger.info("Fallback provider selected: %s", provider_type)
                return
        raise ProviderNotConfiguredError("no configured provider available for fallback")

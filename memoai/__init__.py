"""
memoai - LLM provider orchestration for a note-taking server.

Quick Start:
    from memoai import ConfigManager, LLMService, TagService, load_setting
    from memoai.context import background

    service = LLMService()
    ConfigManager(service).load_from_setting(background(), load_setting())
    tags = TagService(service)
    resp = tags.suggest_tags(background(), user_id, "Meeting notes for project Alpha")

CLI Usage:
    memoai providers
    memoai tags "Meeting notes for project Alpha"
    memoai config show

Environment Variables:
    MEMOAI_CONFIG      - Settings file (default ~/.memoai/memoai.toml)
    MEMOAI_HOME        - State directory for logs (default ~/.memoai)
    MEMOAI_MASTER_KEY  - Secret used to encrypt stored API keys
"""

from .config import ConfigManager, LLMSetting, load_setting, save_setting
from .context import Context, background
from .errors import LLMError, VaultError
from .key_storage import InMemoryKeyStorage, KeyStorageService, StoredAPIKey
from .service import LLMService
from .tag_service import TagJob, TagJobStatus, TagService, TagServiceConfig
from .types import (
    CompletionRequest,
    CompletionResponse,
    EmbeddingRequest,
    EmbeddingResponse,
    LLMProviderSetting,
    Message,
    ProviderConfig,
    ProviderType,
    Role,
    SuggestTagsRequest,
    SuggestTagsResponse,
    SummarizeRequest,
    SummarizeResponse,
)

__version__ = "0.1.0"
__all__ = [
    "ConfigManager",
    "LLMSetting",
    "LLMProviderSetting",
    "load_setting",
    "save_setting",
    "Context",
    "background",
    "LLMError",
    "VaultError",
    "InMemoryKeyStorage",
    "KeyStorageService",
    "StoredAPIKey",
    "LLMService",
    "TagService",
    "TagServiceConfig",
    "TagJob",
    "TagJobStatus",
    "ProviderConfig",
    "ProviderType",
    "Role",
    "Message",
    "CompletionRequest",
    "CompletionResponse",
    "EmbeddingRequest",
    "EmbeddingResponse",
    "SuggestTagsRequest",
    "SuggestTagsResponse",
    "SummarizeRequest",
    "SummarizeResponse",
]

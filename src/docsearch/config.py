"""Configuration management for docsearch using Hydra.

Configuration is loaded from YAML files in conf/docsearch/ and validated into
typed pydantic models. Secrets and paths may reference environment variables
with shell syntax (``${VAR}`` or ``$VAR``); these are expanded by the models,
not by OmegaConf interpolation.
"""

import os
import re
from pathlib import Path

from hydra import compose, initialize_config_dir
from omegaconf import DictConfig, OmegaConf
from pydantic import BaseModel, Field, field_validator, model_validator

from docsearch.chunking import ChunkingConfig

DEFAULT_PROVIDER = "openai"
DEFAULT_MODEL = "text-embedding-3-large"
DEFAULT_DB_PATH = "embeddings.db"

# Default model per provider when none is configured
PROVIDER_DEFAULT_MODELS = {
    "openai": DEFAULT_MODEL,
    "ollama": "nomic-embed-text",
    "voyage": "voyage-3",
}

PROVIDER_ALIASES = {"voyageai": "voyage"}

ENV_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def expand_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``$VAR`` references against the environment.

    Unset variables expand to the empty string.

    Example:
        >>> os.environ["DOCSEARCH_DEMO"] = "secret"
        >>> expand_env_vars("key-${DOCSEARCH_DEMO}")
        'key-secret'
    """
    if not value:
        return value
    return ENV_REFERENCE.sub(
        lambda match: os.environ.get(match.group(1) or match.group(2), ""), value
    )


class EmbeddingsConfig(BaseModel):
    """Embedding provider and vector store configuration.

    Attributes:
        enabled: Whether vector search is enabled at all
        provider: "openai", "ollama" or "voyage" ("voyageai" is accepted)
        model: Embedding model; empty selects the provider's default
        api_key: API key for remote providers (env references allowed)
        base_url: Optional endpoint override (env references allowed)
        db_path: SQLite database path (env references allowed)
    """

    enabled: bool = False
    provider: str = DEFAULT_PROVIDER
    model: str = ""
    api_key: str | None = None
    base_url: str | None = None
    db_path: str = DEFAULT_DB_PATH

    @field_validator("provider", mode="before")
    @classmethod
    def normalize_provider(cls, v: str | None) -> str:
        """Apply the default provider and resolve aliases."""
        provider = (v or DEFAULT_PROVIDER).strip().lower()
        provider = PROVIDER_ALIASES.get(provider, provider)
        if provider not in PROVIDER_DEFAULT_MODELS:
            allowed = sorted(PROVIDER_DEFAULT_MODELS)
            raise ValueError(f"provider must be one of {allowed}, got {v!r}")
        return provider

    @field_validator("api_key", "base_url", mode="before")
    @classmethod
    def expand_optional(cls, v: str | None) -> str | None:
        """Expand env references; empty results become None."""
        if v is None:
            return None
        return expand_env_vars(str(v)) or None

    @field_validator("db_path", mode="before")
    @classmethod
    def expand_db_path(cls, v: str | None) -> str:
        """Expand env references and fall back to the default path."""
        return expand_env_vars(str(v or "")) or DEFAULT_DB_PATH

    @model_validator(mode="after")
    def apply_default_model(self) -> "EmbeddingsConfig":
        """Fill in the provider's default model when none is given."""
        if not self.model:
            self.model = PROVIDER_DEFAULT_MODELS[self.provider]
        return self


class SearchConfig(BaseModel):
    """Search behavior configuration.

    Attributes:
        default_limit: Results requested when the caller gives no limit
        max_limit: Upper bound applied to any requested limit
    """

    default_limit: int = Field(default=20, ge=1, le=100)
    max_limit: int = Field(default=20, ge=1, le=100)

    def clamp_limit(self, limit: int | None) -> int:
        """Return ``limit`` (or the default) clamped into [1, max_limit]."""
        if limit is None:
            limit = self.default_limit
        return max(1, min(limit, self.max_limit))


class DocSearchConfig(BaseModel):
    """Top-level configuration for document search.

    Attributes:
        embeddings: Provider and store configuration
        chunking: Text chunking configuration
        search: Search limits
    """

    embeddings: EmbeddingsConfig = Field(default_factory=EmbeddingsConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)


def load_config(
    config_name: str = "default",
    config_path: str | Path | None = None,
    overrides: list[str] | None = None,
) -> DocSearchConfig:
    """Load docsearch configuration from Hydra YAML files.

    Args:
        config_name: Name of config file (without .yaml extension)
        config_path: Path to config directory (defaults to conf/docsearch/)
        overrides: List of config overrides (e.g., ["embeddings.provider=ollama"])

    Returns:
        Validated configuration object

    Raises:
        FileNotFoundError: If the config directory does not exist

    Example:
        >>> config = load_config("default")
        >>> config.embeddings.model
        'text-embedding-3-large'
    """
    if config_path is None:
        # Default to conf/docsearch/ relative to repo root
        repo_root = Path(__file__).parent.parent.parent
        config_path = repo_root / "conf" / "docsearch"

    config_path = Path(config_path).resolve()

    if not config_path.exists():
        raise FileNotFoundError(
            f"Config directory not found: {config_path}\n" f"Create it with: mkdir -p {config_path}"
        )

    with initialize_config_dir(
        config_dir=str(config_path), version_base=None, job_name="docsearch"
    ):
        cfg: DictConfig = compose(config_name=config_name, overrides=overrides or [])

    # Shell-style ${VAR} references are left for the models to expand
    config_dict = OmegaConf.to_container(cfg, resolve=False)
    return DocSearchConfig(**config_dict)  # type: ignore


def create_default_config() -> dict[str, dict[str, object]]:
    """Create a default configuration dictionary for bootstrapping.

    Returns:
        Dictionary suitable for writing to conf/docsearch/default.yaml
    """
    return {
        "embeddings": {
            "enabled": True,
            "provider": DEFAULT_PROVIDER,
            "model": DEFAULT_MODEL,
            "api_key": "${OPENAI_API_KEY}",
            "base_url": None,
            "db_path": DEFAULT_DB_PATH,
        },
        "chunking": {
            "max_chunk_size": 1500,
            "overlap_size": 150,
            "min_chunk_size": 20,
        },
        "search": {
            "default_limit": 20,
            "max_limit": 20,
        },
    }

"""
Configuration Management for Company Brain

Loads configuration from ~/.brain/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

logger = logging.getLogger("brain.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".brain"
CONFIG_PATH = CONFIG_DIR / "config.json"
ARTICLES_DIR = CONFIG_DIR / "articles"
VECTOR_DIR = CONFIG_DIR / "vectors"
DATA_DIR = CONFIG_DIR / "data"

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass
class LLMConfig:
    """Generative model configuration (primary model plus fallback chain)"""
    provider: str = "google"  # google | anthropic | openai
    google_api_key: str = ""
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    model: str = "gemini-2.0-flash"
    fallback_models: List[str] = field(default_factory=lambda: ["gemini-1.5-flash", "gemini-1.5-pro"])
    follow_up_model: str = ""  # empty: reuse the answer chain
    max_tokens: int = 2048
    timeout: float = 60.0
    follow_ups_enabled: bool = True


@dataclass
class EmbeddingConfig:
    """Embedding model configuration"""
    provider: str = "google"  # google | openai
    model: str = "models/text-embedding-004"
    embed_char_budget: int = 8000


@dataclass
class VectorConfig:
    """Vector index configuration"""
    path: str = str(VECTOR_DIR)  # empty string: in-memory index
    collection: str = "company-brain"


@dataclass
class StorageConfig:
    """Durable storage locations"""
    articles_dir: str = str(ARTICLES_DIR)
    data_dir: str = str(DATA_DIR)


@dataclass
class RetrieverConfig:
    """Context assembly configuration"""
    topk: int = 5
    max_projects: int = 5
    max_members: int = 10
    record_char_limit: int = 200
    context_char_limit: int = 10000
    article_char_limit: int = 2000
    unrestricted_scopes: List[str] = field(default_factory=lambda: ["admin"])


@dataclass
class IngestConfig:
    """Ingestion configuration"""
    max_concurrency: int = 1
    max_table_rows: int = 500
    default_access_scope: List[str] = field(default_factory=lambda: ["general"])
    metadata_extraction: bool = True
    metadata_char_limit: int = 10000


@dataclass
class CompanyConfig:
    """Company profile used in the system framing"""
    name: str = "Company Brain Inc."
    industry: str = "AI & Software"
    description: str = "Internal knowledge management and AI assistant."


@dataclass
class ServerConfig:
    """HTTP server configuration"""
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"


@dataclass
class BrainConfig:
    """Main Company Brain configuration"""
    llm: LLMConfig = field(default_factory=LLMConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    vector: VectorConfig = field(default_factory=VectorConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    retriever: RetrieverConfig = field(default_factory=RetrieverConfig)
    ingest: IngestConfig = field(default_factory=IngestConfig)
    company: CompanyConfig = field(default_factory=CompanyConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)

    @property
    def api_key(self) -> str:
        """API key for the configured generation provider"""
        return getattr(self.llm, f"{self.llm.provider}_api_key", "")


def _parse_models(value) -> List[str]:
    """Accept a list or a comma separated string"""
    if isinstance(value, str):
        return [m.strip() for m in value.split(",") if m.strip()]
    return [str(m) for m in (value or [])]


def _parse_llm_config(data: dict) -> LLMConfig:
    """Parse llm section from config dict"""
    llm_data = data.get("llm", {})
    defaults = LLMConfig()
    return LLMConfig(
        provider=llm_data.get("provider", defaults.provider),
        google_api_key=llm_data.get("google_api_key", ""),
        anthropic_api_key=llm_data.get("anthropic_api_key", ""),
        openai_api_key=llm_data.get("openai_api_key", ""),
        model=llm_data.get("model", defaults.model),
        fallback_models=_parse_models(llm_data.get("fallback_models", defaults.fallback_models)),
        follow_up_model=llm_data.get("follow_up_model", ""),
        max_tokens=llm_data.get("max_tokens", defaults.max_tokens),
        timeout=llm_data.get("timeout", defaults.timeout),
        follow_ups_enabled=llm_data.get("follow_ups_enabled", True),
    )


def _parse_embedding_config(data: dict) -> EmbeddingConfig:
    """Parse embedding section from config dict"""
    embedding_data = data.get("embedding", {})
    return EmbeddingConfig(
        provider=embedding_data.get("provider", "google"),
        model=embedding_data.get("model", "models/text-embedding-004"),
        embed_char_budget=embedding_data.get("embed_char_budget", 8000),
    )


def _parse_vector_config(data: dict) -> VectorConfig:
    """Parse vector section from config dict"""
    vector_data = data.get("vector", {})
    return VectorConfig(
        path=vector_data.get("path", str(VECTOR_DIR)),
        collection=vector_data.get("collection", "company-brain"),
    )


def _parse_storage_config(data: dict) -> StorageConfig:
    """Parse storage section from config dict"""
    storage_data = data.get("storage", {})
    return StorageConfig(
        articles_dir=storage_data.get("articles_dir", str(ARTICLES_DIR)),
        data_dir=storage_data.get("data_dir", str(DATA_DIR)),
    )


def _parse_retriever_config(data: dict) -> RetrieverConfig:
    """Parse retriever section from config dict"""
    retriever_data = data.get("retriever", {})
    defaults = RetrieverConfig()
    return RetrieverConfig(
        topk=retriever_data.get("topk", defaults.topk),
        max_projects=retriever_data.get("max_projects", defaults.max_projects),
        max_members=retriever_data.get("max_members", defaults.max_members),
        record_char_limit=retriever_data.get("record_char_limit", defaults.record_char_limit),
        context_char_limit=retriever_data.get("context_char_limit", defaults.context_char_limit),
        article_char_limit=retriever_data.get("article_char_limit", defaults.article_char_limit),
        unrestricted_scopes=list(retriever_data.get("unrestricted_scopes", defaults.unrestricted_scopes)),
    )


def _parse_ingest_config(data: dict) -> IngestConfig:
    """Parse ingest section from config dict"""
    ingest_data = data.get("ingest", {})
    defaults = IngestConfig()
    return IngestConfig(
        max_concurrency=ingest_data.get("max_concurrency", defaults.max_concurrency),
        max_table_rows=ingest_data.get("max_table_rows", defaults.max_table_rows),
        default_access_scope=list(ingest_data.get("default_access_scope", defaults.default_access_scope)),
        metadata_extraction=ingest_data.get("metadata_extraction", True),
        metadata_char_limit=ingest_data.get("metadata_char_limit", defaults.metadata_char_limit),
    )


def _parse_company_config(data: dict) -> CompanyConfig:
    """Parse company section from config dict"""
    company_data = data.get("company", {})
    defaults = CompanyConfig()
    return CompanyConfig(
        name=company_data.get("name", defaults.name),
        industry=company_data.get("industry", defaults.industry),
        description=company_data.get("description", defaults.description),
    )


def _parse_server_config(data: dict) -> ServerConfig:
    """Parse server section from config dict"""
    server_data = data.get("server", {})
    return ServerConfig(
        host=server_data.get("host", "0.0.0.0"),
        port=server_data.get("port", 8080),
        log_level=server_data.get("log_level", "INFO"),
    )


def _config_path() -> Path:
    override = os.getenv("BRAIN_CONFIG")
    return Path(override).expanduser() if override else CONFIG_PATH


def load_config() -> BrainConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (including a local .env file)
    2. Config file (~/.brain/config.json, or $BRAIN_CONFIG)
    3. Default values
    """
    load_dotenv()
    config = BrainConfig()

    config_path = _config_path()
    if config_path.exists():
        try:
            with open(config_path) as f:
                data = json.load(f)

            config.llm = _parse_llm_config(data)
            config.embedding = _parse_embedding_config(data)
            config.vector = _parse_vector_config(data)
            config.storage = _parse_storage_config(data)
            config.retriever = _parse_retriever_config(data)
            config.ingest = _parse_ingest_config(data)
            config.company = _parse_company_config(data)
            config.server = _parse_server_config(data)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Failed to load config file %s: %s", config_path, e)

    # LLM env var overrides (track env-sourced keys so they are never saved)
    _env_llm_map = {
        "GOOGLE_API_KEY": "google_api_key",
        "GEMINI_API_KEY": "google_api_key",
        "ANTHROPIC_API_KEY": "anthropic_api_key",
        "OPENAI_API_KEY": "openai_api_key",
        "BRAIN_LLM_PROVIDER": "provider",
        "BRAIN_LLM_MODEL": "model",
    }
    for env_var, attr in _env_llm_map.items():
        val = os.getenv(env_var)
        if val:
            setattr(config.llm, attr, val)
            config._env_sourced_keys.add(attr)

    if os.getenv("BRAIN_FALLBACK_MODELS"):
        config.llm.fallback_models = _parse_models(os.getenv("BRAIN_FALLBACK_MODELS"))

    if os.getenv("BRAIN_EMBEDDING_PROVIDER"):
        config.embedding.provider = os.getenv("BRAIN_EMBEDDING_PROVIDER")
    if os.getenv("BRAIN_EMBEDDING_MODEL"):
        config.embedding.model = os.getenv("BRAIN_EMBEDDING_MODEL")

    if os.getenv("BRAIN_VECTOR_PATH") is not None:
        config.vector.path = os.getenv("BRAIN_VECTOR_PATH")
    if os.getenv("BRAIN_ARTICLES_DIR"):
        config.storage.articles_dir = os.getenv("BRAIN_ARTICLES_DIR")
    if os.getenv("BRAIN_DATA_DIR"):
        config.storage.data_dir = os.getenv("BRAIN_DATA_DIR")

    if os.getenv("BRAIN_CONTEXT_CHAR_LIMIT"):
        config.retriever.context_char_limit = int(os.getenv("BRAIN_CONTEXT_CHAR_LIMIT"))
    if os.getenv("BRAIN_PORT"):
        config.server.port = int(os.getenv("BRAIN_PORT"))
    if os.getenv("BRAIN_LOG_LEVEL"):
        config.server.log_level = os.getenv("BRAIN_LOG_LEVEL")

    return config


def save_config(config: BrainConfig) -> None:
    """Save configuration to file.

    API key fields that were sourced from environment variables are written
    as empty strings so that secrets are not persisted to disk.
    """
    config_path = _config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())

    _llm_api_key_fields = {
        "google_api_key", "anthropic_api_key", "openai_api_key",
    }
    llm_section = {
        "provider": config.llm.provider,
        "google_api_key": config.llm.google_api_key,
        "anthropic_api_key": config.llm.anthropic_api_key,
        "openai_api_key": config.llm.openai_api_key,
        "model": config.llm.model,
        "fallback_models": list(config.llm.fallback_models),
        "follow_up_model": config.llm.follow_up_model,
        "max_tokens": config.llm.max_tokens,
        "timeout": config.llm.timeout,
        "follow_ups_enabled": config.llm.follow_ups_enabled,
    }
    for key in _llm_api_key_fields:
        if key in env_sourced:
            llm_section[key] = ""

    data = {
        "llm": llm_section,
        "embedding": {
            "provider": config.embedding.provider,
            "model": config.embedding.model,
            "embed_char_budget": config.embedding.embed_char_budget,
        },
        "vector": {
            "path": config.vector.path,
            "collection": config.vector.collection,
        },
        "storage": {
            "articles_dir": config.storage.articles_dir,
            "data_dir": config.storage.data_dir,
        },
        "retriever": {
            "topk": config.retriever.topk,
            "max_projects": config.retriever.max_projects,
            "max_members": config.retriever.max_members,
            "record_char_limit": config.retriever.record_char_limit,
            "context_char_limit": config.retriever.context_char_limit,
            "article_char_limit": config.retriever.article_char_limit,
            "unrestricted_scopes": list(config.retriever.unrestricted_scopes),
        },
        "ingest": {
            "max_concurrency": config.ingest.max_concurrency,
            "max_table_rows": config.ingest.max_table_rows,
            "default_access_scope": list(config.ingest.default_access_scope),
            "metadata_extraction": config.ingest.metadata_extraction,
            "metadata_char_limit": config.ingest.metadata_char_limit,
        },
        "company": {
            "name": config.company.name,
            "industry": config.company.industry,
            "description": config.company.description,
        },
        "server": {
            "host": config.server.host,
            "port": config.server.port,
            "log_level": config.server.log_level,
        },
    }

    with open(config_path, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    config_path.chmod(0o600)


def ensure_directories(config: BrainConfig) -> None:
    """Ensure required directories exist"""
    Path(config.storage.articles_dir).expanduser().mkdir(parents=True, exist_ok=True)
    Path(config.storage.data_dir).expanduser().mkdir(parents=True, exist_ok=True)
    if config.vector.path:
        Path(config.vector.path).expanduser().mkdir(parents=True, exist_ok=True)


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the brain logger hierarchy"""
    root = logging.getLogger("brain")
    root.setLevel(level.upper())
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)

"""
Configuration management for screentrail stores.

The configuration is stored as a TOML file in the store directory. It
names the providers to use (and their parameters), the capture cadence,
query result budgets and the capture supervisor's retry policy.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import tomli_w


CONFIG_FILENAME = "screentrail.toml"
CONFIG_VERSION = 1
DEFAULT_STORE_DIR = ".screentrail"


@dataclass
class ProviderConfig:
    """Configuration for a single provider."""
    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class CaptureConfig:
    interval: float = 60.0  # seconds between screenshots
    enabled: bool = True


@dataclass
class QueryConfig:
    filtered_results: int = 10
    default_results: int = 5
    timeout: float = 30.0  # per request to the time parser and summarizer


@dataclass
class SupervisorConfig:
    max_restarts: int = 5  # consecutive failures before giving up
    backoff_base: float = 5.0
    backoff_max: float = 300.0


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    capture: CaptureConfig = field(default_factory=CaptureConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    supervisor: SupervisorConfig = field(default_factory=SupervisorConfig)

    # Provider configurations
    embedding: ProviderConfig = field(default_factory=lambda: ProviderConfig("sentence-transformers"))
    vision: ProviderConfig = field(default_factory=lambda: ProviderConfig("anthropic"))
    time_parser: ProviderConfig = field(default_factory=lambda: ProviderConfig("anthropic"))
    summarization: ProviderConfig = field(default_factory=lambda: ProviderConfig("anthropic"))

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def history_dir(self) -> Path:
        """Directory of persisted activity records (one JSON file each)."""
        return self.path / "screenhistory"

    @property
    def screenshots_dir(self) -> Path:
        """Directory of raw screenshots."""
        return self.path / "screenshots"

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_default_store_path() -> Path:
    """Store location: SCREENTRAIL_STORE_PATH, else ~/.screentrail."""
    env = os.environ.get("SCREENTRAIL_STORE_PATH")
    if env:
        return Path(env).expanduser()
    return Path.home() / DEFAULT_STORE_DIR


def detect_default_providers() -> dict[str, ProviderConfig]:
    """
    Detect the best default providers for the current environment.

    Priority for the LLM roles (vision, time parser, summarization):
    1. Anthropic (if ANTHROPIC_API_KEY or CLAUDE_CODE_OAUTH_TOKEN is set)
    2. OpenAI (if SCREENTRAIL_OPENAI_API_KEY or OPENAI_API_KEY is set)
    3. Ollama (local)

    Embeddings always default to local sentence-transformers.
    """
    has_anthropic_key = bool(
        os.environ.get("ANTHROPIC_API_KEY") or
        os.environ.get("CLAUDE_CODE_OAUTH_TOKEN")
    )
    has_openai_key = bool(
        os.environ.get("SCREENTRAIL_OPENAI_API_KEY") or
        os.environ.get("OPENAI_API_KEY")
    )

    if has_anthropic_key:
        vision = ProviderConfig("anthropic", {"model": "claude-sonnet-4-5-20250929"})
        text = ProviderConfig("anthropic", {"model": "claude-haiku-4-5-20251001"})
    elif has_openai_key:
        vision = ProviderConfig("openai", {"model": "gpt-4.1-mini"})
        text = ProviderConfig("openai", {"model": "gpt-4.1-mini"})
    else:
        vision = ProviderConfig("ollama", {"model": "llama3.2-vision"})
        text = ProviderConfig("ollama", {"model": "llama3.2"})

    return {
        "embedding": ProviderConfig("sentence-transformers", {"model": "all-MiniLM-L6-v2"}),
        "vision": vision,
        "time_parser": ProviderConfig(text.name, dict(text.params)),
        "summarization": ProviderConfig(text.name, dict(text.params)),
    }


def create_default_config(store_path: Path) -> StoreConfig:
    """Create a new config with auto-detected defaults."""
    providers = detect_default_providers()

    return StoreConfig(
        path=store_path,
        embedding=providers["embedding"],
        vision=providers["vision"],
        time_parser=providers["time_parser"],
        summarization=providers["summarization"],
    )


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    def parse_provider(section: dict, default: str) -> ProviderConfig:
        return ProviderConfig(
            name=section.get("name", default),
            params={k: v for k, v in section.items() if k != "name"},
        )

    capture = data.get("capture", {})
    query = data.get("query", {})
    supervisor = data.get("supervisor", {})
    defaults = StoreConfig(path=store_path)

    try:
        return StoreConfig(
            path=store_path,
            version=version,
            created=data.get("store", {}).get("created", ""),
            capture=CaptureConfig(
                interval=float(capture.get("interval", defaults.capture.interval)),
                enabled=bool(capture.get("enabled", defaults.capture.enabled)),
            ),
            query=QueryConfig(
                filtered_results=int(query.get("filtered_results", defaults.query.filtered_results)),
                default_results=int(query.get("default_results", defaults.query.default_results)),
                timeout=float(query.get("timeout", defaults.query.timeout)),
            ),
            supervisor=SupervisorConfig(
                max_restarts=int(supervisor.get("max_restarts", defaults.supervisor.max_restarts)),
                backoff_base=float(supervisor.get("backoff_base", defaults.supervisor.backoff_base)),
                backoff_max=float(supervisor.get("backoff_max", defaults.supervisor.backoff_max)),
            ),
            embedding=parse_provider(data.get("embedding", {}), "sentence-transformers"),
            vision=parse_provider(data.get("vision", {}), "anthropic"),
            time_parser=parse_provider(data.get("time_parser", {}), "anthropic"),
            summarization=parse_provider(data.get("summarization", {}), "anthropic"),
        )
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid config in {config_path}: {e}") from e


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    def provider_to_dict(p: ProviderConfig) -> dict:
        d = {"name": p.name}
        d.update(p.params)
        return d

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "capture": {
            "interval": config.capture.interval,
            "enabled": config.capture.enabled,
        },
        "query": {
            "filtered_results": config.query.filtered_results,
            "default_results": config.query.default_results,
            "timeout": config.query.timeout,
        },
        "supervisor": {
            "max_restarts": config.supervisor.max_restarts,
            "backoff_base": config.supervisor.backoff_base,
            "backoff_max": config.supervisor.backoff_max,
        },
        "embedding": provider_to_dict(config.embedding),
        "vision": provider_to_dict(config.vision),
        "time_parser": provider_to_dict(config.time_parser),
        "summarization": provider_to_dict(config.summarization),
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    else:
        config = create_default_config(store_path)
        save_config(config)
        return config

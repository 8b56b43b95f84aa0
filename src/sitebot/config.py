"""sitebot configuration loader.

Priority (high → low):
  1. CLI flags           (handled at the call site, not in this module)
  2. Environment variables  (SITEBOT_DB, SITEBOT_GENERATION_MODEL, SITEBOT_EMBEDDING_MODEL)
  3. Per-project sitebot.yaml  (working directory)
  4. Global ~/.sitebot/config.yaml  (model defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".sitebot"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "sitebot.yaml"

# Matches api_key, apikey, api-key, api_secret, *_token, token, *_secret,
# secret, password, passwd, credential(s). Does NOT match max_tokens or top_k.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    [
        "database",
        "embedding",
        "generation",
        "retrieval",
        "chunking",
        "crawler",
        "webhooks",
        "server",
    ]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class DatabaseCfg:
    path: str = ".sitebot.db"


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (sitebot.yaml: embedding:).

    ``dimensions`` must match the stored vectors; there is no runtime
    negotiation, so changing the model means re-ingesting every source.
    """

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 96


@dataclass
class GenerationCfg:
    model: str = "openai/gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 1024


@dataclass
class RetrievalCfg:
    top_k: int = 5


@dataclass
class ChunkingCfg:
    """Character-based chunking (sitebot.yaml: chunking:)."""

    chunk_size: int = 1000
    chunk_overlap: int = 200


@dataclass
class CrawlerCfg:
    timeout: int = 30
    max_bytes: int = 5 * 1024 * 1024
    max_redirects: int = 3


@dataclass
class WebhooksCfg:
    """Delivery timeouts and the retry backoff schedule (sitebot.yaml: webhooks:)."""

    timeout_ms: int = 5_000
    test_timeout_ms: int = 10_000
    max_attempts: int = 3
    base_delay_ms: int = 1_000
    max_delay_ms: int = 30_000


@dataclass
class ServerCfg:
    host: str = "127.0.0.1"
    port: int = 8000


@dataclass
class SitebotConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    database: DatabaseCfg = field(default_factory=DatabaseCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    crawler: CrawlerCfg = field(default_factory=CrawlerCfg)
    webhooks: WebhooksCfg = field(default_factory=WebhooksCfg)
    server: ServerCfg = field(default_factory=ServerCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: SitebotConfig) -> None:
    if cfg.chunking.chunk_size < 1:
        raise ConfigError("chunking.chunk_size must be >= 1")
    if not 0 <= cfg.chunking.chunk_overlap < cfg.chunking.chunk_size:
        raise ConfigError("chunking.chunk_overlap must be >= 0 and smaller than chunk_size")
    if cfg.retrieval.top_k < 1:
        raise ConfigError("retrieval.top_k must be >= 1")
    if cfg.embedding.dimensions < 1:
        raise ConfigError("embedding.dimensions must be >= 1")
    if cfg.embedding.batch_size < 1:
        raise ConfigError("embedding.batch_size must be >= 1")
    if cfg.webhooks.timeout_ms < 1 or cfg.webhooks.test_timeout_ms < 1:
        raise ConfigError("webhooks timeouts must be positive")
    if cfg.webhooks.max_attempts < 1:
        raise ConfigError("webhooks.max_attempts must be >= 1")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> SitebotConfig:
    """Build a *SitebotConfig* from a merged raw YAML dict."""
    cfg = SitebotConfig()

    if "database" in data:
        d = data["database"] or {}
        cfg.database = DatabaseCfg(path=str(d.get("path", cfg.database.path)))

    if "embedding" in data:
        e = data["embedding"] or {}
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            batch_size=int(e.get("batch_size", cfg.embedding.batch_size)),
        )

    if "generation" in data:
        g = data["generation"] or {}
        cfg.generation = GenerationCfg(
            model=str(g.get("model", cfg.generation.model)),
            temperature=float(g.get("temperature", cfg.generation.temperature)),
            max_tokens=int(g.get("max_tokens", cfg.generation.max_tokens)),
        )

    if "retrieval" in data:
        r = data["retrieval"] or {}
        cfg.retrieval = RetrievalCfg(top_k=int(r.get("top_k", cfg.retrieval.top_k)))

    if "chunking" in data:
        c = data["chunking"] or {}
        cfg.chunking = ChunkingCfg(
            chunk_size=int(c.get("chunk_size", cfg.chunking.chunk_size)),
            chunk_overlap=int(c.get("chunk_overlap", cfg.chunking.chunk_overlap)),
        )

    if "crawler" in data:
        cr = data["crawler"] or {}
        cfg.crawler = CrawlerCfg(
            timeout=int(cr.get("timeout", cfg.crawler.timeout)),
            max_bytes=int(cr.get("max_bytes", cfg.crawler.max_bytes)),
            max_redirects=int(cr.get("max_redirects", cfg.crawler.max_redirects)),
        )

    if "webhooks" in data:
        w = data["webhooks"] or {}
        cfg.webhooks = WebhooksCfg(
            timeout_ms=int(w.get("timeout_ms", cfg.webhooks.timeout_ms)),
            test_timeout_ms=int(w.get("test_timeout_ms", cfg.webhooks.test_timeout_ms)),
            max_attempts=int(w.get("max_attempts", cfg.webhooks.max_attempts)),
            base_delay_ms=int(w.get("base_delay_ms", cfg.webhooks.base_delay_ms)),
            max_delay_ms=int(w.get("max_delay_ms", cfg.webhooks.max_delay_ms)),
        )

    if "server" in data:
        s = data["server"] or {}
        cfg.server = ServerCfg(
            host=str(s.get("host", cfg.server.host)),
            port=int(s.get("port", cfg.server.port)),
        )

    return cfg


def _apply_env_overrides(cfg: SitebotConfig) -> SitebotConfig:
    """Apply SITEBOT_* environment variable overrides (layer 2)."""
    if path := os.environ.get("SITEBOT_DB"):
        cfg.database.path = path
    if model := os.environ.get("SITEBOT_GENERATION_MODEL"):
        cfg.generation.model = model
    if model := os.environ.get("SITEBOT_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> SitebotConfig:
    """Load and return a merged *SitebotConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *sitebot.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields or a
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    try:
        cfg = _cfg_from_dict(merged)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    cfg = _apply_env_overrides(cfg)
    _validate(cfg)
    return cfg


def write_project_config(target: Path, cfg: SitebotConfig | None = None) -> Path:
    """Write a commented sitebot.yaml with the given (or default) settings."""
    cfg = cfg or SitebotConfig()
    content = (
        "# sitebot project configuration.\n"
        "# NEVER store API keys here; use environment variables:\n"
        "#   export OPENAI_API_KEY=<your key>\n"
        "\n"
        + yaml.safe_dump(
            {
                "database": {"path": cfg.database.path},
                "embedding": {
                    "model": cfg.embedding.model,
                    "dimensions": cfg.embedding.dimensions,
                },
                "generation": {"model": cfg.generation.model},
                "retrieval": {"top_k": cfg.retrieval.top_k},
                "chunking": {
                    "chunk_size": cfg.chunking.chunk_size,
                    "chunk_overlap": cfg.chunking.chunk_overlap,
                },
                "webhooks": {"timeout_ms": cfg.webhooks.timeout_ms},
            },
            sort_keys=False,
        )
    )
    target.write_text(content, encoding="utf-8")
    return target

"""contextkit configuration loader.

Priority (high → low):
  1. Explicit arguments   (handled at call site — not in this module)
  2. Environment variables  (CONTEXTKIT_LOG_LEVEL, CONTEXTKIT_RPC_TIMEOUT)
  3. Per-project contextkit.yaml  (current working directory)
  4. Global ~/.contextkit/config.yaml
  5. Hardcoded defaults

All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import warnings
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from contextkit.models import CacheStrategy

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".contextkit"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "contextkit.yaml"

# Known top-level sections; unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["cache", "priority", "packer", "session", "rpc", "logging"]
)

_LOG_LEVELS: frozenset[str] = frozenset(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class PriorityCfg:
    """Priority engine timing (contextkit.yaml: priority:).

    Attributes:
        recalc_interval: Seconds between background recompute/evict/preload cycles.
        similar_limit: How many similar documents to preload per access.
        similar_relevance: Context relevance assigned to preloaded similar documents.
    """

    recalc_interval: float = 300.0
    similar_limit: int = 3
    similar_relevance: float = 0.6


@dataclass
class PackerCfg:
    """Token budgets for context packing (contextkit.yaml: packer:)."""

    max_rag_tokens: int = 1500
    total_budget: int = 4000
    min_conversation_tokens: int = 1500
    allocation_max_rag_tokens: int = 2000
    include_scores: bool = False


@dataclass
class SessionCfg:
    """Per-conversation selection policy (contextkit.yaml: session:).

    Attributes:
        min_relevance: Minimum suggestion confidence for auto selection.
        max_documents: Cap on auto-selected and suggested documents.
        refresh_interval: Seconds between embedding-queue ticks.
        analysis_window: Number of trailing messages sent for analysis.
    """

    min_relevance: float = 0.7
    max_documents: int = 10
    refresh_interval: float = 5.0
    analysis_window: int = 10


@dataclass
class RpcCfg:
    """Bridge settings (contextkit.yaml: rpc:). ``timeout: null`` waits indefinitely."""

    timeout: float | None = None


@dataclass
class LoggingCfg:
    level: str = "INFO"
    file: str | None = None


@dataclass
class ContextkitConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    cache: CacheStrategy = field(default_factory=CacheStrategy)
    priority: PriorityCfg = field(default_factory=PriorityCfg)
    packer: PackerCfg = field(default_factory=PackerCfg)
    session: SessionCfg = field(default_factory=SessionCfg)
    rpc: RpcCfg = field(default_factory=RpcCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ConfigError(message)


def validate_config(cfg: ContextkitConfig) -> None:
    """Raise ConfigError for values the engine and packer cannot work with."""
    _require(
        0.0 <= cfg.cache.priority_threshold <= 1.0,
        f"cache.priority_threshold must be within [0, 1], got {cfg.cache.priority_threshold}",
    )
    _require(
        cfg.cache.max_cached_documents >= 0,
        f"cache.max_cached_documents must be >= 0, got {cfg.cache.max_cached_documents}",
    )
    _require(
        cfg.priority.recalc_interval > 0,
        f"priority.recalc_interval must be positive, got {cfg.priority.recalc_interval}",
    )
    _require(
        cfg.priority.similar_limit >= 0,
        f"priority.similar_limit must be >= 0, got {cfg.priority.similar_limit}",
    )
    for name in ("max_rag_tokens", "total_budget", "allocation_max_rag_tokens"):
        value = getattr(cfg.packer, name)
        _require(value > 0, f"packer.{name} must be positive, got {value}")
    _require(
        cfg.packer.min_conversation_tokens >= 0,
        f"packer.min_conversation_tokens must be >= 0, got {cfg.packer.min_conversation_tokens}",
    )
    _require(
        0.0 <= cfg.session.min_relevance <= 1.0,
        f"session.min_relevance must be within [0, 1], got {cfg.session.min_relevance}",
    )
    _require(
        cfg.session.refresh_interval > 0,
        f"session.refresh_interval must be positive, got {cfg.session.refresh_interval}",
    )
    _require(
        cfg.session.max_documents > 0 and cfg.session.analysis_window > 0,
        "session.max_documents and session.analysis_window must be positive",
    )
    _require(
        cfg.rpc.timeout is None or cfg.rpc.timeout > 0,
        f"rpc.timeout must be positive or null, got {cfg.rpc.timeout}",
    )
    _require(
        cfg.logging.level.upper() in _LOG_LEVELS,
        f"logging.level must be one of {sorted(_LOG_LEVELS)}, got '{cfg.logging.level}'",
    )


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


def _opt_float(value: Any) -> float | None:
    return None if value is None else float(value)


def _cfg_from_dict(data: dict[str, Any]) -> ContextkitConfig:
    """Build a *ContextkitConfig* from a merged raw YAML dict."""
    cfg = ContextkitConfig()

    try:
        if "cache" in data:
            c = data["cache"] or {}
            cfg.cache = CacheStrategy(
                max_cached_documents=int(c.get("max_cached_documents", cfg.cache.max_cached_documents)),
                priority_threshold=float(c.get("priority_threshold", cfg.cache.priority_threshold)),
                background_processing=bool(
                    c.get("background_processing", cfg.cache.background_processing)
                ),
                preload_similar_documents=bool(
                    c.get("preload_similar_documents", cfg.cache.preload_similar_documents)
                ),
            )

        if "priority" in data:
            p = data["priority"] or {}
            cfg.priority = PriorityCfg(
                recalc_interval=float(p.get("recalc_interval", cfg.priority.recalc_interval)),
                similar_limit=int(p.get("similar_limit", cfg.priority.similar_limit)),
                similar_relevance=float(p.get("similar_relevance", cfg.priority.similar_relevance)),
            )

        if "packer" in data:
            k = data["packer"] or {}
            cfg.packer = PackerCfg(
                max_rag_tokens=int(k.get("max_rag_tokens", cfg.packer.max_rag_tokens)),
                total_budget=int(k.get("total_budget", cfg.packer.total_budget)),
                min_conversation_tokens=int(
                    k.get("min_conversation_tokens", cfg.packer.min_conversation_tokens)
                ),
                allocation_max_rag_tokens=int(
                    k.get("allocation_max_rag_tokens", cfg.packer.allocation_max_rag_tokens)
                ),
                include_scores=bool(k.get("include_scores", cfg.packer.include_scores)),
            )

        if "session" in data:
            s = data["session"] or {}
            cfg.session = SessionCfg(
                min_relevance=float(s.get("min_relevance", cfg.session.min_relevance)),
                max_documents=int(s.get("max_documents", cfg.session.max_documents)),
                refresh_interval=float(s.get("refresh_interval", cfg.session.refresh_interval)),
                analysis_window=int(s.get("analysis_window", cfg.session.analysis_window)),
            )

        if "rpc" in data:
            r = data["rpc"] or {}
            cfg.rpc = RpcCfg(timeout=_opt_float(r.get("timeout", cfg.rpc.timeout)))

        if "logging" in data:
            lg = data["logging"] or {}
            cfg.logging = LoggingCfg(
                level=str(lg.get("level", cfg.logging.level)).upper(),
                file=lg.get("file") or cfg.logging.file,
            )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    return cfg


def _apply_env_overrides(cfg: ContextkitConfig) -> ContextkitConfig:
    """Apply CONTEXTKIT_* environment variable overrides."""
    if level := os.environ.get("CONTEXTKIT_LOG_LEVEL"):
        cfg.logging.level = level.upper()
    if timeout := os.environ.get("CONTEXTKIT_RPC_TIMEOUT"):
        try:
            cfg.rpc.timeout = float(timeout)
        except ValueError as exc:
            raise ConfigError(
                f"CONTEXTKIT_RPC_TIMEOUT must be a number of seconds, got '{timeout}'"
            ) from exc
    return cfg


def _read_yaml(path: Path) -> dict[str, Any]:
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file '{path}' must contain a mapping at the top level.")
    return raw


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> ContextkitConfig:
    """Load and return a merged, validated *ContextkitConfig*.

    Applies layers in order: global → per-project → env vars.

    Args:
        project_dir: Directory to search for *contextkit.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If a file is malformed or a value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = _read_yaml(global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = _read_yaml(project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    validate_config(cfg)
    return cfg

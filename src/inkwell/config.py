"""inkwell configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (INKWELL_EMBEDDING_MODEL)
  3. Per-workspace inkwell.yaml  (next to the workspace database)
  4. Global ~/.inkwell/config.yaml  (defaults only — no API keys)
  5. Hardcoded defaults

Every tunable the engine uses (chunk thresholds, retrieval cutoffs, the
auto-commit confidence bar) is defined here once and read from the loaded
config; nothing downstream inlines these numbers.
All YAML reads use yaml.safe_load() — never yaml.load().
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

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".inkwell"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "inkwell.yaml"

# Fields that suggest an API key; forbidden in global config.
# Does NOT match legitimate keys like target_tokens or overlap_chars.
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
    ["workspace", "embedding", "chunking", "retrieval", "patches"]
)
_OFFLOAD_MODES: frozenset[str] = frozenset(["thread", "process", "off"])
_TOKENIZERS: frozenset[str] = frozenset(["estimate", "model"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class WorkspaceCfg:
    """Workspace identity (inkwell.yaml: workspace:)."""

    id: str = ""
    name: str = ""


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (inkwell.yaml: embedding:)."""

    model: str = "ollama/nomic-embed-text"
    num_retries: int = 3


@dataclass
class ChunkingCfg:
    """Fragment chunking thresholds (inkwell.yaml: chunking:).

    Keep these stable for a workspace's lifetime: changing them re-chunks
    every long fragment on its next edit.

    Attributes:
        target_tokens: Size each chunk aims for (4 characters ≈ 1 token).
        split_threshold: Content is chunked only above
            ``target_tokens * split_threshold`` tokens (avoids micro-chunks).
        overlap_chars: Tail of the previous chunk that seeds the next one.
        tokenizer: 'estimate' (4 characters per token) or 'model', which asks
            LiteLLM to count with the embedding model's own tokenizer.
    """

    target_tokens: int = 500
    split_threshold: float = 1.5
    overlap_chars: int = 200
    tokenizer: str = "estimate"


@dataclass
class RetrievalCfg:
    """Similarity retrieval configuration (inkwell.yaml: retrieval:).

    Attributes:
        top_k: Candidates kept after ranking, before filtering.
        relevance_floor: Results scoring below this cosine value are dropped.
        score_gap: Relative drop between neighbours that truncates the list.
        excerpt_chars: Body characters shown per formatted passage.
        offload: Where ranking runs for large candidate sets:
            'thread', 'process', or 'off' (always synchronous).
        offload_min_candidates: Candidate count at which ranking is offloaded.
        offload_timeout: Seconds to wait for an offloaded ranking before
            falling back to synchronous execution.
    """

    top_k: int = 5
    relevance_floor: float = 0.25
    score_gap: float = 0.4
    excerpt_chars: int = 600
    offload: str = "thread"
    offload_min_candidates: int = 256
    offload_timeout: float = 5.0


@dataclass
class PatchesCfg:
    """Patch engine configuration (inkwell.yaml: patches:)."""

    auto_commit_threshold: float = 0.85


@dataclass
class InkwellConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    workspace: WorkspaceCfg = field(default_factory=WorkspaceCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    patches: PatchesCfg = field(default_factory=PatchesCfg)


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


def _validate(cfg: InkwellConfig) -> None:
    """Raise ConfigError for values the engine cannot run with."""
    c = cfg.chunking
    if c.target_tokens < 1:
        raise ConfigError(f"chunking.target_tokens must be >= 1, got {c.target_tokens}")
    if c.split_threshold < 1.0:
        raise ConfigError(f"chunking.split_threshold must be >= 1.0, got {c.split_threshold}")
    if not 0 <= c.overlap_chars < c.target_tokens * 4:
        raise ConfigError(
            f"chunking.overlap_chars must be in [0, {c.target_tokens * 4}), got {c.overlap_chars}"
        )
    if c.tokenizer not in _TOKENIZERS:
        raise ConfigError(
            f"chunking.tokenizer must be one of {sorted(_TOKENIZERS)}, got '{c.tokenizer}'"
        )

    r = cfg.retrieval
    if r.top_k < 1:
        raise ConfigError(f"retrieval.top_k must be >= 1, got {r.top_k}")
    if not 0.0 <= r.relevance_floor <= 1.0:
        raise ConfigError(f"retrieval.relevance_floor must be in [0, 1], got {r.relevance_floor}")
    if not 0.0 < r.score_gap <= 1.0:
        raise ConfigError(f"retrieval.score_gap must be in (0, 1], got {r.score_gap}")
    if r.offload not in _OFFLOAD_MODES:
        raise ConfigError(
            f"retrieval.offload must be one of {sorted(_OFFLOAD_MODES)}, got '{r.offload}'"
        )

    if not 0.0 <= cfg.patches.auto_commit_threshold <= 1.0:
        raise ConfigError(
            "patches.auto_commit_threshold must be in [0, 1], "
            f"got {cfg.patches.auto_commit_threshold}"
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


def _cfg_from_dict(data: dict[str, Any]) -> InkwellConfig:
    """Build an *InkwellConfig* from a merged raw YAML dict."""
    cfg = InkwellConfig()

    if "workspace" in data:
        w = data["workspace"] or {}
        cfg.workspace = WorkspaceCfg(
            id=str(w.get("id", cfg.workspace.id)),
            name=str(w.get("name", cfg.workspace.name)),
        )

    if "embedding" in data:
        e = data["embedding"] or {}
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            num_retries=int(e.get("num_retries", cfg.embedding.num_retries)),
        )

    if "chunking" in data:
        c = data["chunking"] or {}
        cfg.chunking = ChunkingCfg(
            target_tokens=int(c.get("target_tokens", cfg.chunking.target_tokens)),
            split_threshold=float(c.get("split_threshold", cfg.chunking.split_threshold)),
            overlap_chars=int(c.get("overlap_chars", cfg.chunking.overlap_chars)),
            tokenizer=str(c.get("tokenizer", cfg.chunking.tokenizer)),
        )

    if "retrieval" in data:
        r = data["retrieval"] or {}
        cfg.retrieval = RetrievalCfg(
            top_k=int(r.get("top_k", cfg.retrieval.top_k)),
            relevance_floor=float(r.get("relevance_floor", cfg.retrieval.relevance_floor)),
            score_gap=float(r.get("score_gap", cfg.retrieval.score_gap)),
            excerpt_chars=int(r.get("excerpt_chars", cfg.retrieval.excerpt_chars)),
            offload=str(r.get("offload", cfg.retrieval.offload)),
            offload_min_candidates=int(
                r.get("offload_min_candidates", cfg.retrieval.offload_min_candidates)
            ),
            offload_timeout=float(r.get("offload_timeout", cfg.retrieval.offload_timeout)),
        )

    if "patches" in data:
        p = data["patches"] or {}
        cfg.patches = PatchesCfg(
            auto_commit_threshold=float(
                p.get("auto_commit_threshold", cfg.patches.auto_commit_threshold)
            ),
        )

    return cfg


def _apply_env_overrides(cfg: InkwellConfig) -> InkwellConfig:
    """Apply INKWELL_* environment variable overrides."""
    if model := os.environ.get("INKWELL_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> InkwellConfig:
    """Load and return a merged *InkwellConfig*.

    Applies layers in order: global → per-workspace → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *inkwell.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields, or a
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

    cfg = _cfg_from_dict(merged)
    cfg = _apply_env_overrides(cfg)
    _validate(cfg)
    return cfg


def write_project_config(project_dir: Path, workspace_id: str, name: str) -> Path:
    """Write a starter *inkwell.yaml* into *project_dir* unless one exists."""
    target = project_dir / _PROJECT_CONFIG_NAME
    if target.exists():
        return target
    defaults = InkwellConfig()
    data = {
        "workspace": {"id": workspace_id, "name": name},
        "embedding": {"model": defaults.embedding.model},
        "chunking": {
            "target_tokens": defaults.chunking.target_tokens,
            "split_threshold": defaults.chunking.split_threshold,
            "overlap_chars": defaults.chunking.overlap_chars,
            "tokenizer": defaults.chunking.tokenizer,
        },
        "retrieval": {
            "top_k": defaults.retrieval.top_k,
            "relevance_floor": defaults.retrieval.relevance_floor,
            "score_gap": defaults.retrieval.score_gap,
        },
    }
    target.write_text(
        "# inkwell workspace configuration — no API keys here.\n"
        + yaml.safe_dump(data, sort_keys=False),
        encoding="utf-8",
    )
    return target

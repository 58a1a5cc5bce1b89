"""Woodpecker configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (WOODPECKER_CHAT_MODEL, WOODPECKER_EXTRACTION_MODEL,
                             WOODPECKER_LOG_LEVEL, WOODPECKER_CRAWL_API_URL)
  3. Per-project woodpecker.yaml  (current working directory)
  4. Global ~/.woodpecker/config.yaml  (model defaults only — no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load() — never yaml.load().

The retrieval section accepts similarity/hybrid/reranker settings for
compatibility with the product settings screen. Retrieval is lexical only;
these values are validated and stored but never consulted.
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

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".woodpecker"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "woodpecker.yaml"

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
    ["chunking", "extraction", "chat", "retrieval", "crawl", "upload", "storage", "logging"]
)

_PDF_MODES: frozenset[str] = frozenset(["llm", "local"])

DEFAULT_ACCEPTED_EXTENSIONS: tuple[str, ...] = (
    ".pdf", ".docx", ".xlsx", ".pptx", ".txt", ".csv", ".md", ".epub",
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
class ChunkingCfg:
    """Chunk size and overlap in characters (woodpecker.yaml: chunking:)."""

    chunk_size: int = 1000
    overlap: int = 200


@dataclass
class ExtractionCfg:
    """Text extraction (woodpecker.yaml: extraction:).

    Attributes:
        model: LiteLLM model used for multimodal PDF extraction.
        pdf_mode: 'llm' (send the PDF to *model*) or 'local' (pypdf).
    """

    model: str = "gemini/gemini-2.5-flash"
    pdf_mode: str = "llm"


@dataclass
class ChatCfg:
    """Chat completion (woodpecker.yaml: chat:).

    Attributes:
        model: LiteLLM model used for streamed answers.
        endpoint: URL of a running chat endpoint. None = answer in-process.
        title_length: Characters of the first message used as conversation title.
    """

    model: str = "gemini/gemini-2.5-flash"
    endpoint: str | None = None
    title_length: int = 60


@dataclass
class RetrievalCfg:
    """Retrieval configuration (woodpecker.yaml: retrieval:)."""

    top_k: int = 5
    similarity_threshold: float = 0.7   # inert
    hybrid_search: bool = False         # inert
    keyword_weight: float = 0.3         # inert
    reranker: bool = False              # inert


@dataclass
class CrawlCfg:
    """Crawl service (woodpecker.yaml: crawl:). API key: FIRECRAWL_API_KEY."""

    api_url: str = "https://api.firecrawl.dev/v1"
    page_limit: int = 20
    max_depth: int = 2
    poll_interval: float = 2.0
    max_attempts: int = 30
    timeout: int = 30


@dataclass
class UploadCfg:
    """Upload validation limits (woodpecker.yaml: upload:)."""

    max_file_size_mb: int = 50
    max_files: int = 10
    accepted_extensions: list[str] = field(
        default_factory=lambda: list(DEFAULT_ACCEPTED_EXTENSIONS)
    )


@dataclass
class StorageCfg:
    """Local datastore locations (woodpecker.yaml: storage:)."""

    db_path: str = ".woodpecker.db"
    objects_dir: str = ".woodpecker/objects"


@dataclass
class LoggingCfg:
    level: str = "WARNING"


@dataclass
class WoodpeckerConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    extraction: ExtractionCfg = field(default_factory=ExtractionCfg)
    chat: ChatCfg = field(default_factory=ChatCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    crawl: CrawlCfg = field(default_factory=CrawlCfg)
    upload: UploadCfg = field(default_factory=UploadCfg)
    storage: StorageCfg = field(default_factory=StorageCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


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


def _validate(cfg: WoodpeckerConfig) -> None:
    ch = cfg.chunking
    if ch.chunk_size < 1:
        raise ConfigError(f"chunking.chunk_size must be >= 1, got {ch.chunk_size}")
    if not 0 <= ch.overlap < ch.chunk_size:
        raise ConfigError(
            f"chunking.overlap must be in [0, chunk_size), got {ch.overlap}"
        )
    if cfg.extraction.pdf_mode not in _PDF_MODES:
        raise ConfigError(
            f"extraction.pdf_mode must be one of {sorted(_PDF_MODES)}, "
            f"got '{cfg.extraction.pdf_mode}'"
        )
    r = cfg.retrieval
    if r.top_k < 1:
        raise ConfigError(f"retrieval.top_k must be >= 1, got {r.top_k}")
    if not 0.0 <= r.similarity_threshold <= 1.0:
        raise ConfigError(
            f"retrieval.similarity_threshold must be in [0, 1], got {r.similarity_threshold}"
        )
    if r.hybrid_search or r.reranker:
        warnings.warn(
            "retrieval.hybrid_search / retrieval.reranker are not implemented; "
            "retrieval is full-text only and these settings are ignored.",
            UserWarning,
            stacklevel=3,
        )
    if cfg.upload.max_files < 1:
        raise ConfigError(f"upload.max_files must be >= 1, got {cfg.upload.max_files}")
    if cfg.crawl.max_attempts < 1:
        raise ConfigError(f"crawl.max_attempts must be >= 1, got {cfg.crawl.max_attempts}")


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


def _normalise_ext(ext: str) -> str:
    ext = str(ext).strip().lower()
    return ext if ext.startswith(".") else f".{ext}"


def _cfg_from_dict(data: dict[str, Any]) -> WoodpeckerConfig:
    """Build a *WoodpeckerConfig* from a merged raw YAML dict."""
    cfg = WoodpeckerConfig()

    if "chunking" in data:
        c = data["chunking"] or {}
        cfg.chunking = ChunkingCfg(
            chunk_size=int(c.get("chunk_size", cfg.chunking.chunk_size)),
            overlap=int(c.get("overlap", cfg.chunking.overlap)),
        )

    if "extraction" in data:
        e = data["extraction"] or {}
        cfg.extraction = ExtractionCfg(
            model=str(e.get("model", cfg.extraction.model)),
            pdf_mode=str(e.get("pdf_mode", cfg.extraction.pdf_mode)),
        )

    if "chat" in data:
        c = data["chat"] or {}
        cfg.chat = ChatCfg(
            model=str(c.get("model", cfg.chat.model)),
            endpoint=c.get("endpoint") or cfg.chat.endpoint,
            title_length=int(c.get("title_length", cfg.chat.title_length)),
        )

    if "retrieval" in data:
        r = data["retrieval"] or {}
        cfg.retrieval = RetrievalCfg(
            top_k=int(r.get("top_k", cfg.retrieval.top_k)),
            similarity_threshold=float(
                r.get("similarity_threshold", cfg.retrieval.similarity_threshold)
            ),
            hybrid_search=bool(r.get("hybrid_search", cfg.retrieval.hybrid_search)),
            keyword_weight=float(r.get("keyword_weight", cfg.retrieval.keyword_weight)),
            reranker=bool(r.get("reranker", cfg.retrieval.reranker)),
        )

    if "crawl" in data:
        c = data["crawl"] or {}
        cfg.crawl = CrawlCfg(
            api_url=str(c.get("api_url", cfg.crawl.api_url)).rstrip("/"),
            page_limit=int(c.get("page_limit", cfg.crawl.page_limit)),
            max_depth=int(c.get("max_depth", cfg.crawl.max_depth)),
            poll_interval=float(c.get("poll_interval", cfg.crawl.poll_interval)),
            max_attempts=int(c.get("max_attempts", cfg.crawl.max_attempts)),
            timeout=int(c.get("timeout", cfg.crawl.timeout)),
        )

    if "upload" in data:
        u = data["upload"] or {}
        exts = u.get("accepted_extensions")
        cfg.upload = UploadCfg(
            max_file_size_mb=int(u.get("max_file_size_mb", cfg.upload.max_file_size_mb)),
            max_files=int(u.get("max_files", cfg.upload.max_files)),
            accepted_extensions=(
                [_normalise_ext(x) for x in exts]
                if exts
                else list(cfg.upload.accepted_extensions)
            ),
        )

    if "storage" in data:
        s = data["storage"] or {}
        cfg.storage = StorageCfg(
            db_path=str(s.get("db_path", cfg.storage.db_path)),
            objects_dir=str(s.get("objects_dir", cfg.storage.objects_dir)),
        )

    if "logging" in data:
        lg = data["logging"] or {}
        cfg.logging = LoggingCfg(level=str(lg.get("level", cfg.logging.level)).upper())

    return cfg


def _apply_env_overrides(cfg: WoodpeckerConfig) -> WoodpeckerConfig:
    """Apply WOODPECKER_* environment variable overrides."""
    if model := os.environ.get("WOODPECKER_CHAT_MODEL"):
        cfg.chat.model = model
    if model := os.environ.get("WOODPECKER_EXTRACTION_MODEL"):
        cfg.extraction.model = model
    if level := os.environ.get("WOODPECKER_LOG_LEVEL"):
        cfg.logging.level = level.upper()
    if url := os.environ.get("WOODPECKER_CRAWL_API_URL"):
        cfg.crawl.api_url = url.rstrip("/")
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> WoodpeckerConfig:
    """Load and return a merged *WoodpeckerConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *woodpecker.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields, or any
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


def ensure_project_config(project_dir: Path | None = None) -> Path:
    """Write a commented ``woodpecker.yaml`` with defaults if none exists.

    Returns:
        Path to the project config file.
    """
    target = (project_dir if project_dir is not None else Path.cwd()) / _PROJECT_CONFIG_NAME
    if not target.exists():
        content = (
            "# Woodpecker project configuration.\n"
            "# NEVER store API keys here — use environment variables:\n"
            "#   export GEMINI_API_KEY=...\n"
            "#   export FIRECRAWL_API_KEY=fc-...\n"
            "\n"
            "chunking:\n"
            "  chunk_size: 1000\n"
            "  overlap: 200\n"
            "\n"
            "extraction:\n"
            "  model: gemini/gemini-2.5-flash\n"
            "  pdf_mode: llm\n"
            "\n"
            "chat:\n"
            "  model: gemini/gemini-2.5-flash\n"
            "\n"
            "retrieval:\n"
            "  top_k: 5\n"
        )
        target.write_text(content, encoding="utf-8")
    return target

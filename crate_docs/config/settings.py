"""Application settings and configuration schema."""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

DEFAULT_CACHE_DIR = Path.home() / ".crate-docs" / "cache"


class CacheCfg(BaseModel):
    """On-disk cache location."""
    root: Path = DEFAULT_CACHE_DIR


class HttpCfg(BaseModel):
    """Registry download configuration."""
    registry_url: str = "https://crates.io/api/v1/crates"
    timeout_secs: float = 60.0
    max_redirects: int = 10
    user_agent: str = "crate-docs/0.1.0 (https://github.com/crate-docs/crate-docs)"


class GitCfg(BaseModel):
    """Git clone/checkout configuration."""
    timeout_secs: float = 300.0
    token_env: str = "GITHUB_TOKEN"


class GenerationCfg(BaseModel):
    """rustdoc JSON generation configuration."""
    toolchain: str = "nightly-2025-06-23"
    timeout_secs: float = 600.0
    metadata_timeout_secs: float = 120.0
    toolchain_check_timeout_secs: float = 30.0
    max_excerpt_chars: int = 1500


class SearchCfg(BaseModel):
    """Search index limits."""
    max_items_per_crate: int = 100_000
    default_limit: int = 50
    max_limit: int = 1000
    max_query_length: int = 1000
    default_fuzzy_distance: int = 1
    max_fuzzy_distance: int = 2


class Settings(BaseModel):
    """Main application settings."""
    cache: CacheCfg = CacheCfg()
    http: HttpCfg = HttpCfg()
    git: GitCfg = GitCfg()
    generation: GenerationCfg = GenerationCfg()
    search: SearchCfg = SearchCfg()


def load_settings(cache_dir: Optional[Path] = None) -> Settings:
    """
    Build settings, applying environment overrides.

    Args:
        cache_dir: Explicit cache root; wins over CRATE_DOCS_CACHE_DIR

    Returns:
        Settings instance
    """
    cache = CacheCfg()
    env_dir = os.environ.get("CRATE_DOCS_CACHE_DIR")
    if cache_dir is not None:
        cache = CacheCfg(root=Path(cache_dir))
    elif env_dir:
        cache = CacheCfg(root=Path(env_dir).expanduser())

    generation = GenerationCfg()
    env_timeout = os.environ.get("CRATE_DOCS_GENERATION_TIMEOUT")
    if env_timeout:
        generation = GenerationCfg(timeout_secs=float(env_timeout))

    return Settings(cache=cache, generation=generation)

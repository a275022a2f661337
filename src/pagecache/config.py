"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Constructor arguments  (the settings-save path, tests)
  2. Environment variables  (PAGECACHE__CACHE__PAGE_TTL_SECONDS=600)
  3. pagecache.yaml         (searched in cwd, then platform config dir)
  4. Hardcoded defaults

The config file is optional; all fields have sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import platformdirs
import structlog
import yaml
from pydantic import BaseModel, ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from pagecache.exclusions import parse_pattern_list
from pagecache.store import atomic_write

if TYPE_CHECKING:
    from pagecache.admin import CacheAdmin

log = structlog.get_logger()

_DEFAULT_CACHE_DIR = platformdirs.user_cache_dir("pagecache")
_CONFIG_FILE_NAME = "pagecache.yaml"

_DEFAULT_BYPASS_COOKIES = [
    "wordpress_logged_in_",
    "wp-postpass_",
    "comment_author_",
    "woocommerce_items_in_cart",
    "woocommerce_cart_hash",
    "wp_woocommerce_session_",
]

_DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


def _find_config_file() -> str | None:
    """Return the path of the first pagecache.yaml found, or None."""
    candidates = [
        Path(_CONFIG_FILE_NAME),
        Path(platformdirs.user_config_dir("pagecache")) / _CONFIG_FILE_NAME,
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class SiteSettings(BaseModel):
    home_url: str = "http://localhost:8000"
    document_root: str = "."
    base_path: str = ""


class CacheSettings(BaseModel):
    enabled: bool = True
    cache_dir: str = _DEFAULT_CACHE_DIR
    public_url: str = "/_pagecache/"
    page_ttl_seconds: int = 3600
    asset_ttl_seconds: int = 7 * 24 * 3600
    lock_ttl_seconds: int = 300
    status_header: str = "X-PageCache"


class OptimizeSettings(BaseModel):
    minify_html: bool = True
    minify_css: bool = True
    minify_js: bool = True
    combine_css: bool = False
    combine_js: bool = False
    defer_scripts: bool = True
    debug_footer: bool = True
    local_fonts: bool = False
    local_avatars: bool = False


class ExclusionSettings(BaseModel):
    pages: list[str] = []
    css: list[str] = []
    js: list[str] = []

    @field_validator("pages", "css", "js", mode="before")
    @classmethod
    def _split_lines(cls, value: Any) -> list[str]:
        return parse_pattern_list(value)


class BypassSettings(BaseModel):
    cookies: list[str] = _DEFAULT_BYPASS_COOKIES
    logged_in_cookies: list[str] = ["wordpress_logged_in_"]
    admin_paths: list[str] = ["/wp-admin", "/wp-login.php"]
    ajax_paths: list[str] = ["/wp-admin/admin-ajax.php"]
    rest_paths: list[str] = ["/wp-json"]
    feed_paths: list[str] = ["/feed", "/comments/feed"]
    search_paths: list[str] = ["/search"]
    search_params: list[str] = ["s"]
    preview_params: list[str] = ["preview"]

    @field_validator("cookies", "logged_in_cookies", mode="before")
    @classmethod
    def _split_lines(cls, value: Any) -> list[str]:
        return parse_pattern_list(value)


class FetcherSettings(BaseModel):
    timeout_seconds: float = 10.0
    max_redirects: int = 3
    user_agent: str = _DEFAULT_USER_AGENT
    font_stylesheet_hosts: list[str] = ["fonts.googleapis.com"]
    font_file_hosts: list[str] = ["fonts.gstatic.com"]
    avatar_hosts: list[str] = [
        "gravatar.com",
        "secure.gravatar.com",
        "www.gravatar.com",
        "0.gravatar.com",
        "1.gravatar.com",
        "2.gravatar.com",
    ]


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: PAGECACHE__CACHE__PAGE_TTL_SECONDS=600
        env_prefix="PAGECACHE__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    site: SiteSettings = SiteSettings()
    cache: CacheSettings = CacheSettings()
    optimize: OptimizeSettings = OptimizeSettings()
    exclusions: ExclusionSettings = ExclusionSettings()
    bypass: BypassSettings = BypassSettings()
    fetcher: FetcherSettings = FetcherSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )


class SettingsStore:
    """Persistent settings with a per-request snapshot.

    ``current()`` is called once per request cycle. The YAML file is re-read
    only when its mtime changes; missing keys fall back to defaults. Saving
    writes the file atomically and purges the whole cache, since optimized
    pages may embed output from features that are now disabled.
    """

    def __init__(
        self,
        path: Path | None = None,
        *,
        settings: Settings | None = None,
        admin: CacheAdmin | None = None,
    ) -> None:
        self._path = path
        self._admin = admin
        self._snapshot: Settings | None = settings
        self._mtime: float | None = None

    @property
    def path(self) -> Path | None:
        return self._path

    def bind_admin(self, admin: CacheAdmin) -> None:
        self._admin = admin

    def current(self) -> Settings:
        if self._path is None and self._snapshot is not None:
            return self._snapshot
        mtime = self._file_mtime()
        if self._snapshot is None or mtime != self._mtime:
            self._snapshot = self._load()
            self._mtime = mtime
        return self._snapshot

    def save(self, settings: Settings) -> bool:
        """Persist ``settings`` and invalidate every cached page and asset."""
        if self._path is not None:
            payload = yaml.safe_dump(settings.model_dump(mode="json"), sort_keys=False)
            if not atomic_write(self._path, payload.encode("utf-8")):
                return False

        self._snapshot = settings
        self._mtime = self._file_mtime()
        log.info("settings_saved", path=str(self._path) if self._path else None)

        if self._admin is not None:
            self._admin.purge_all()
        return True

    def _file_mtime(self) -> float | None:
        if self._path is None:
            return None
        try:
            return self._path.stat().st_mtime
        except OSError:
            return None

    def _load(self) -> Settings:
        if self._path is None or not self._path.exists():
            return Settings()
        try:
            data = yaml.safe_load(self._path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError):
            log.warning("settings_read_error", path=str(self._path), exc_info=True)
            return Settings()
        if not isinstance(data, dict):
            log.warning("settings_invalid_document", path=str(self._path))
            return Settings()
        try:
            return Settings(**data)
        except ValidationError:
            log.warning("settings_validation_error", path=str(self._path), exc_info=True)
            return Settings()

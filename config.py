"""Runtime settings read from environment variables."""
import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_TAG_LIST_URL = "http://pastebin.com/raw.php?i=dMePcZ9e"


class ConfigError(ValueError):
    """A setting is missing or has an invalid value."""


def _int_setting(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = env.get(name, str(default))
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ConfigError(f"{name} must be at least {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    """Configuration of one sync invocation."""
    blog_id: str = 'moscropnews'
    calendar_id: str = ''
    calendar_api_key: str = ''
    tag_list_url: str = DEFAULT_TAG_LIST_URL
    tag_list_path: str = '/tmp/taglist.json'
    page_size: int = 20
    calendar_max_results: int = 1000
    storage_backend: str = 'dynamodb'
    posts_table: str = 'feed-posts'
    events_table: str = 'feed-events'
    metadata_table: str = 'feed-sync-metadata'
    timeout_seconds: int = 30
    max_retries: int = 3
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'Settings':
        """
        Build settings from environment variables.

        Raises:
            ConfigError: If a numeric value or the storage backend is invalid
        """
        env = os.environ if env is None else env

        backend = env.get('STORAGE_BACKEND', cls.storage_backend).lower()
        if backend not in ('dynamodb', 'memory'):
            raise ConfigError(f"STORAGE_BACKEND must be 'dynamodb' or 'memory', got {backend!r}")

        return cls(
            blog_id=env.get('BLOG_ID', cls.blog_id),
            calendar_id=env.get('CALENDAR_ID', cls.calendar_id),
            calendar_api_key=env.get('CALENDAR_API_KEY', cls.calendar_api_key),
            tag_list_url=env.get('TAG_LIST_URL', cls.tag_list_url),
            tag_list_path=env.get('TAG_LIST_PATH', cls.tag_list_path),
            page_size=_int_setting(env, 'PAGE_SIZE', cls.page_size, minimum=1),
            calendar_max_results=_int_setting(
                env, 'CALENDAR_MAX_RESULTS', cls.calendar_max_results, minimum=1
            ),
            storage_backend=backend,
            posts_table=env.get('POSTS_TABLE', cls.posts_table),
            events_table=env.get('EVENTS_TABLE', cls.events_table),
            metadata_table=env.get('METADATA_TABLE', cls.metadata_table),
            timeout_seconds=_int_setting(env, 'TIMEOUT_SECONDS', cls.timeout_seconds, minimum=1),
            max_retries=_int_setting(env, 'MAX_RETRIES', cls.max_retries, minimum=1),
            log_level=env.get('LOG_LEVEL', cls.log_level)
        )

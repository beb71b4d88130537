"""Process-wide configuration for the webhook listener.

Everything is read once at startup from the environment (optionally seeded
from a .env file). Real environment variables win over the file.
"""
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from .utils import load_env

SECRET_VAR = 'WEBHOOK_SECRET'
SCRIPT_VAR = 'WEBHOOK_SCRIPT'
SOURCE_VAR = 'WEBHOOK_SOURCE'
WEBSITE_VAR = 'WEBHOOK_WEBSITE'

DEFAULT_HOST = '127.0.0.1'
DEFAULT_PORT = 8080
DEFAULT_PATH = '/'
DEFAULT_TIMEOUT = 600.0
DEFAULT_MAX_BODY = 32 * 1024
HEALTH_PATH = '/health'
MAX_PORT = 65535


class ConfigError(ValueError):
    """Raised when the environment does not describe a usable listener."""


@dataclass(frozen=True)
class Settings:
    secret: bytes = field(repr=False)
    script_path: str
    source_dir: Optional[str] = None
    website_dir: Optional[str] = None
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    webhook_path: str = DEFAULT_PATH
    script_timeout: float = DEFAULT_TIMEOUT
    max_body_bytes: int = DEFAULT_MAX_BODY
    allowed_refs: Tuple[str, ...] = ()
    shell: str = 'bash'
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, env_file: Optional[str] = None) -> 'Settings':
        values = dict(load_env(env_file)) if env_file else {}
        values.update(os.environ if environ is None else environ)

        secret = values.get(SECRET_VAR)
        if not secret:
            raise ConfigError(f'{SECRET_VAR} is not set')
        script = values.get(SCRIPT_VAR)
        if not script:
            raise ConfigError(f'{SCRIPT_VAR} is not set')

        path = values.get('WEBHOOK_PATH') or DEFAULT_PATH
        if not path.startswith('/'):
            path = '/' + path
        if path == HEALTH_PATH:
            raise ConfigError(f'WEBHOOK_PATH cannot be {HEALTH_PATH}, it is reserved for the health check')
        port = _number(values, 'WEBHOOK_PORT', int, DEFAULT_PORT)
        if port > MAX_PORT:
            raise ConfigError(f'WEBHOOK_PORT must be at most {MAX_PORT}, got {port}')
        refs = tuple(r.strip() for r in values.get('WEBHOOK_REFS', '').split(',') if r.strip())

        return cls(
            secret=secret.encode('utf-8'),
            script_path=script,
            source_dir=values.get(SOURCE_VAR) or None,
            website_dir=values.get(WEBSITE_VAR) or None,
            host=values.get('WEBHOOK_HOST') or DEFAULT_HOST,
            port=port,
            webhook_path=path,
            script_timeout=_number(values, 'WEBHOOK_TIMEOUT', float, DEFAULT_TIMEOUT),
            max_body_bytes=_number(values, 'WEBHOOK_MAX_BODY', int, DEFAULT_MAX_BODY),
            allowed_refs=refs,
            shell=values.get('WEBHOOK_SHELL', 'bash'),
            log_level=values.get('LOG_LEVEL') or 'INFO',
        )


def _number(values: Mapping[str, str], key: str, cast, default):
    raw = values.get(key)
    if raw is None or raw == '':
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigError(f'{key} must be a number, got {raw!r}') from None
    if value <= 0:
        raise ConfigError(f'{key} must be positive, got {raw!r}')
    return value

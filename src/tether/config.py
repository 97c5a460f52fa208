"""Helper configuration: app-data paths, token bootstrap, and runtime limits.

Everything lives under one per-platform application-data directory
(see :func:`app_data_dir`):

- ``config.json``: bearer token bootstrap (``{token, createdAt}``)
- ``vault.json``: secret store (see :mod:`tether.vault`)
- ``tether.log``: structured log (see :mod:`tether.logging`)

Runtime settings come from ``TETHER_*`` environment variables with validated
fallbacks; invalid values are logged and replaced by defaults.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import secrets
import sys
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

logger = logging.getLogger(__name__)

APP_NAME = "Tether"
CONFIG_FILENAME = "config.json"
VAULT_FILENAME = "vault.json"

DEFAULT_PORT = 9000
DEFAULT_HOST = "127.0.0.1"
DEFAULT_ALLOWED_ORIGINS = ("https://gloriamundo.com",)
DEFAULT_FS_MAX_READ_BYTES = 1024 * 1024  # 1MB
DEFAULT_CALL_TIMEOUT = 30.0
DEFAULT_HANDSHAKE_TIMEOUT = 30.0
DEFAULT_SHUTDOWN_TIMEOUT = 10.0

# Loopback origins are always accepted in addition to the configured list.
LOOPBACK_ORIGIN_REGEX = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"


def app_data_dir() -> Path:
    """Return the per-platform application-data directory.

    ``TETHER_HOME`` overrides the platform default.
    """
    override = os.environ.get("TETHER_HOME", "").strip()
    if override:
        return Path(override).expanduser()
    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / APP_NAME
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        base = Path(appdata) if appdata else home / "AppData" / "Roaming"
        return base / APP_NAME
    return home / ".tether"


def write_atomic(path: Path, content: str, *, mode: int | None = None) -> None:
    """Write content to path atomically via temp file + os.replace().

    When *mode* is given the temp file is created with it, so the content is
    never on disk with looser permissions. A stale temp file is removed first.
    """
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        with contextlib.suppress(FileNotFoundError):
            tmp.unlink()
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o666 if mode is None else mode)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        if mode is not None:
            os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(OSError):
            tmp.unlink()
        raise


def _read_token_file(config_path: Path) -> str | None:
    if not config_path.exists():
        return None
    try:
        data = json.loads(config_path.read_bytes().decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError, OSError) as exc:
        logger.warning("Failed to read %s, generating a new token: %s", config_path, exc)
        return None
    if not isinstance(data, dict):
        logger.warning("Config %s is not a JSON object; generating a new token", config_path)
        return None
    token = data.get("token")
    if isinstance(token, str) and token.strip():
        return token.strip()
    return None


def resolve_token(config_path: Path) -> str:
    """Return the helper's bearer token, creating one on first run.

    Precedence: ``TETHER_HOST_TOKEN`` env var, then ``token`` in
    *config_path*, then a freshly generated 256-bit hex token which is
    persisted to *config_path* (mode 0600).
    """
    env_token = os.environ.get("TETHER_HOST_TOKEN", "").strip()
    if env_token:
        return env_token

    token = _read_token_file(config_path)
    if token:
        return token

    token = secrets.token_hex(32)
    config_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    payload = {"token": token, "createdAt": datetime.now(UTC).isoformat()}
    write_atomic(config_path, json.dumps(payload, indent=2) + "\n", mode=0o600)
    logger.info("Generated new helper token at %s", config_path)
    return token


def resolve_allowed_origins() -> list[str]:
    """Parse ``TETHER_ALLOWED_ORIGINS`` (comma-separated) or return the default list."""
    raw = os.environ.get("TETHER_ALLOWED_ORIGINS")
    if not raw:
        return list(DEFAULT_ALLOWED_ORIGINS)
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def _env_port(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        port = int(raw)
    except ValueError:
        logger.warning("Invalid %s value %r; using default %d", name, raw, default)
        return default
    if not (1 <= port <= 65535):
        logger.warning("%s %d out of range (1-65535); using default %d", name, port, default)
        return default
    return port


def _env_positive_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid %s value %r; using default %d", name, raw, default)
        return default
    if value <= 0:
        logger.warning("%s must be positive, got %d; using default %d", name, value, default)
        return default
    return value


@dataclass
class HelperConfig:
    token: str
    data_dir: Path
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    allowed_origins: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))
    fs_root: Path = field(default_factory=Path.cwd)
    fs_max_read_bytes: int = DEFAULT_FS_MAX_READ_BYTES
    call_timeout: float = DEFAULT_CALL_TIMEOUT
    handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT

    @property
    def config_path(self) -> Path:
        return self.data_dir / CONFIG_FILENAME

    @property
    def vault_path(self) -> Path:
        return self.data_dir / VAULT_FILENAME

    @classmethod
    def load(cls, data_dir: Path | None = None) -> HelperConfig:
        """Build the config from the environment, bootstrapping the token if needed."""
        data_dir = data_dir or app_data_dir()
        fs_root_raw = os.environ.get("TETHER_FS_ROOT", "").strip()
        return cls(
            token=resolve_token(data_dir / CONFIG_FILENAME),
            data_dir=data_dir,
            port=_env_port("TETHER_PORT", DEFAULT_PORT),
            host=os.environ.get("TETHER_BIND", "").strip() or DEFAULT_HOST,
            allowed_origins=resolve_allowed_origins(),
            fs_root=Path(fs_root_raw).expanduser().resolve() if fs_root_raw else Path.cwd().resolve(),
            fs_max_read_bytes=_env_positive_int("TETHER_FS_MAX_READ_BYTES", DEFAULT_FS_MAX_READ_BYTES),
        )

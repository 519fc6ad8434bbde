import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import yaml

from zfsborg.backup.destinations import parse_remote, DEFAULT_SSH_PORT
from zfsborg.backup.executor import DEFAULT_MOUNT_ROOT
from zfsborg.backup.snapshots import DEFAULT_SETTLE_DELAY
from zfsborg.backup.storage import DEFAULT_COMPRESSION, DEFAULT_EXCLUDE_MARKER, DEFAULT_ENCRYPTION
from zfsborg.backup.tiers import RetentionPolicy, SUNDAY, parse_weekday


class Config:
    """Base configuration"""

    DEBUG = False

    # Where snapshots get mounted while being archived
    MOUNT_ROOT = os.environ.get('ZFSBORG_MOUNT_ROOT') or DEFAULT_MOUNT_ROOT

    # Pause after zfs snapshot before the snapshot is mounted
    SETTLE_DELAY = os.environ.get('ZFSBORG_SETTLE_DELAY') or DEFAULT_SETTLE_DELAY

    # Optional rotating log file
    LOG_FILE = os.environ.get('ZFSBORG_LOG_FILE') or None


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    LOG_FILE = os.environ.get('ZFSBORG_LOG_FILE') or os.path.join(DATA_DIR, 'logs', 'zfsborg.log')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


def get_defaults(config_name: Optional[str] = None):
    """Process-level defaults, selected by ZFSBORG_ENV."""
    if config_name is None:
        config_name = os.environ.get('ZFSBORG_ENV', 'production')
    return config.get(config_name, config['default'])


class ConfigError(Exception):
    """Raised when the backup configuration is unreadable or invalid."""
    pass


REQUIRED_KEYS = ('FS', 'LOCAL', 'REMOTE', 'PASS', 'MONTH_KEEP', 'WEEK_KEEP', 'DAY_KEEP')

OPTIONAL_KEYS = (
    'COMPRESSION',
    'EXCLUDE_MARKER',
    'LOCAL_WORLD_READABLE',
    'WEEKLY_DAY',
    'ENCRYPTION',
    'SSH_PORT',
    'SSH_KEY',
    'SETTLE_DELAY',
    'MOUNT_ROOT',
    'LOG_FILE',
)


@dataclass(frozen=True)
class BackupConfig:
    """Validated contents of a backup configuration file."""

    filesystems: Tuple[str, ...]
    local: Optional[str]
    remote: Optional[str]
    passphrase_file: str
    passphrase: str = field(repr=False)
    retention: RetentionPolicy
    compression: str = DEFAULT_COMPRESSION
    exclude_marker: str = DEFAULT_EXCLUDE_MARKER
    local_world_readable: bool = False
    weekly_day: int = SUNDAY
    encryption: str = DEFAULT_ENCRYPTION
    ssh_port: int = DEFAULT_SSH_PORT
    ssh_key: Optional[str] = None
    settle_delay: float = DEFAULT_SETTLE_DELAY
    mount_root: str = DEFAULT_MOUNT_ROOT
    log_file: Optional[str] = None


def read_passphrase(path: str) -> str:
    """
    Read a repository passphrase: the first line of a file.

    Raises:
        ConfigError: If the file is unreadable or the first line is empty
    """
    try:
        with open(path, encoding='utf-8') as f:
            passphrase = f.readline().strip()
    except OSError as e:
        raise ConfigError(f"Cannot read passphrase file {path}: {e.strerror or e}")
    except UnicodeDecodeError as e:
        raise ConfigError(f"Passphrase file {path} is not valid UTF-8: {e}")

    if not passphrase:
        raise ConfigError(f"Passphrase file {path} is empty")
    return passphrase


def _optional_str(raw: Dict[str, Any], key: str, default: Optional[str] = None) -> Optional[str]:
    """String value, with empty/null meaning 'not set'."""
    value = raw.get(key, default)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string, got {value!r}")
    value = value.strip()
    return value or default


def _required_str(raw: Dict[str, Any], key: str) -> str:
    value = _optional_str(raw, key)
    if not value:
        raise ConfigError(f"{key} must not be empty")
    return value


def _non_negative_int(raw: Dict[str, Any], key: str, default: Optional[int] = None) -> int:
    value = raw.get(key, default)
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer, got {value!r}")
    if value < 0:
        raise ConfigError(f"{key} must be >= 0, got {value}")
    return value


def _bool(raw: Dict[str, Any], key: str, default: bool = False) -> bool:
    value = raw.get(key, default)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be true or false, got {value!r}")
    return value


def _filesystems(raw: Dict[str, Any]) -> Tuple[str, ...]:
    value = raw.get('FS')
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not value:
        raise ConfigError("FS must be a non-empty list of filesystems")

    filesystems = []
    for entry in value:
        if not isinstance(entry, str) or not entry.strip():
            raise ConfigError(f"Invalid filesystem entry in FS: {entry!r}")
        name = entry.strip()
        if '@' in name:
            raise ConfigError(f"FS entries name filesystems, not snapshots: {name!r}")
        if name not in filesystems:
            filesystems.append(name)
    return tuple(filesystems)


def _default_settle_delay(defaults) -> float:
    """SETTLE_DELAY default, possibly a string from ZFSBORG_SETTLE_DELAY."""
    try:
        return float(defaults.SETTLE_DELAY)
    except (TypeError, ValueError):
        raise ConfigError(
            f"ZFSBORG_SETTLE_DELAY must be a number of seconds, got {defaults.SETTLE_DELAY!r}"
        )


def load_config(path: str) -> BackupConfig:
    """
    Load and validate a backup configuration file.

    Args:
        path: Path of the YAML configuration file

    Returns:
        BackupConfig with the passphrase already read

    Raises:
        ConfigError: If the file is unreadable or any field is invalid
    """
    defaults = get_defaults()

    try:
        with open(path, encoding='utf-8') as f:
            raw = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e.strerror or e}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file {path}: {e}")

    if not isinstance(raw, dict):
        raise ConfigError(f"Config must be a YAML mapping: {path}")

    unknown = sorted(str(key) for key in raw if key not in REQUIRED_KEYS + OPTIONAL_KEYS)
    if unknown:
        raise ConfigError(f"Unknown config key(s): {', '.join(unknown)}")

    missing = [key for key in REQUIRED_KEYS if key not in raw]
    if missing:
        raise ConfigError(f"Missing required config key(s): {', '.join(missing)}")

    # --- destinations ---
    local = _optional_str(raw, 'LOCAL')
    if local and not os.path.isdir(local):
        raise ConfigError(f"LOCAL directory does not exist: {local}")

    remote = _optional_str(raw, 'REMOTE')
    if remote:
        try:
            parse_remote(remote)
        except ValueError as e:
            raise ConfigError(f"REMOTE: {e}")

    # --- passphrase ---
    passphrase_file = _required_str(raw, 'PASS')
    passphrase = read_passphrase(passphrase_file)

    # --- retention ---
    retention = RetentionPolicy(
        month_keep=_non_negative_int(raw, 'MONTH_KEEP'),
        week_keep=_non_negative_int(raw, 'WEEK_KEEP'),
        day_keep=_non_negative_int(raw, 'DAY_KEEP')
    )

    # --- options ---
    try:
        weekly_day = parse_weekday(raw.get('WEEKLY_DAY', 'sunday'))
    except ValueError as e:
        raise ConfigError(f"WEEKLY_DAY: {e}")

    ssh_port = _non_negative_int(raw, 'SSH_PORT', DEFAULT_SSH_PORT)
    if not 0 < ssh_port < 65536:
        raise ConfigError(f"SSH_PORT must be between 1 and 65535, got {ssh_port}")

    if 'SETTLE_DELAY' in raw:
        settle_delay = raw['SETTLE_DELAY']
    else:
        settle_delay = _default_settle_delay(defaults)

    if isinstance(settle_delay, bool) or not isinstance(settle_delay, (int, float)) or settle_delay < 0:
        raise ConfigError(f"SETTLE_DELAY must be a number of seconds >= 0, got {settle_delay!r}")

    return BackupConfig(
        filesystems=_filesystems(raw),
        local=local,
        remote=remote,
        passphrase_file=passphrase_file,
        passphrase=passphrase,
        retention=retention,
        compression=_optional_str(raw, 'COMPRESSION', DEFAULT_COMPRESSION),
        exclude_marker=_optional_str(raw, 'EXCLUDE_MARKER', DEFAULT_EXCLUDE_MARKER),
        local_world_readable=_bool(raw, 'LOCAL_WORLD_READABLE'),
        weekly_day=weekly_day,
        encryption=_optional_str(raw, 'ENCRYPTION', DEFAULT_ENCRYPTION),
        ssh_port=ssh_port,
        ssh_key=_optional_str(raw, 'SSH_KEY'),
        settle_delay=float(settle_delay),
        mount_root=_optional_str(raw, 'MOUNT_ROOT', defaults.MOUNT_ROOT),
        log_file=_optional_str(raw, 'LOG_FILE', defaults.LOG_FILE)
    )

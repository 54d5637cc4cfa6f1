"""Run configuration, merged from a YAML file, the environment and CLI options."""

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path

import yaml

GLOBAL_CONFIG_DIR = Path.home() / ".config" / "imapbak"
CONFIG_FILE = "config.yaml"
DEFAULT_STORAGE = Path.home() / "imapbak"
ENV_PREFIX = "IMAPBAK_"


@dataclass
class Config:
    """Settings for one imapbak invocation.

    Built once by the CLI and passed to whatever needs it; library modules
    never read global state.
    """
    server: str = ""
    port: int = 993
    user: str = ""
    password: str = ""
    ssl: bool = True
    storage: Path = DEFAULT_STORAGE
    folders: list[str] = field(default_factory=list)  # restrict to these, if set
    months: int | None = None
    force: bool = False
    retries: int = 3
    retry_delay: float = 10.0

    @property
    def local_path(self) -> Path:
        """Directory holding this account's folders: <storage>/<server>/<user>."""
        return Path(self.storage).expanduser() / safe_path_part(self.server) / safe_path_part(self.user)

    def merged(self, **overrides) -> "Config":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def safe_path_part(s: str) -> str:
    """Make a server or user name usable as a single path component."""
    s = s.replace("/", "_").replace("\\", "_")
    return s if s not in ("", ".", "..") else "_"


def split_folders(value: str | list[str] | None) -> list[str]:
    """Parse a comma-separated folder list ('INBOX,Sent') into names."""
    if not value:
        return []
    if isinstance(value, list):
        return [str(v) for v in value]
    return [name.strip() for name in value.split(",") if name.strip()]


def get_config_path(path: str | Path | None = None) -> Path:
    """Config file to read: explicit path, $IMAPBAK_CONFIG, or the global default."""
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    return GLOBAL_CONFIG_DIR / CONFIG_FILE


def _coerce(name: str, value):
    """Convert a YAML or environment value to the type of Config.<name>."""
    if value is None:
        return None
    if name in ("port", "retries", "months"):
        return int(value)
    if name == "retry_delay":
        return float(value)
    if name in ("ssl", "force"):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if name == "storage":
        return Path(str(value)).expanduser()
    if name == "folders":
        return split_folders(value)
    return str(value)


def load_config_file(path: Path) -> dict:
    """Load settings from a YAML file; missing file means no settings."""
    if not path.exists():
        return {}
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at top level")
    known = {f.name for f in fields(Config)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"{path}: unknown settings: {', '.join(sorted(unknown))}")
    return {k: _coerce(k, v) for k, v in data.items()}


def load_env(environ: dict | None = None) -> dict:
    """Settings from IMAPBAK_* environment variables."""
    environ = os.environ if environ is None else environ
    res = {}
    for f in fields(Config):
        value = environ.get(f"{ENV_PREFIX}{f.name.upper()}")
        if value is not None and value != "":
            res[f.name] = _coerce(f.name, value)
    return res


def load_config(path: str | Path | None = None, environ: dict | None = None) -> Config:
    """Defaults, overridden by the config file, overridden by the environment."""
    config = Config()
    config = config.merged(**load_config_file(get_config_path(path)))
    return config.merged(**load_env(environ))


def save_config(config: Config, path: str | Path | None = None) -> Path:
    """Write non-secret settings to the config file. Returns its path."""
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    defaults = Config()
    data = {}
    for f in fields(Config):
        if f.name in ("password", "force", "months"):
            continue
        value = getattr(config, f.name)
        if value == getattr(defaults, f.name):
            continue
        data[f.name] = str(value) if isinstance(value, Path) else value
    with open(config_path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
    return config_path

import os
import json
import tomllib
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_CONFIG_FILE = "config.toml"
DEFAULT_COOKIES_FILE = "config/cookies.txt"
DEFAULT_LOG_LEVEL = "INFO"

GUILD_IDS_HELP = "GUILD_IDS must be either a single numeric ID or a JSON array, e.g. [123456789,987654321]"


class ConfigError(Exception):
    """Raised when settings cannot be loaded or are invalid"""


class Config:
    """Bot settings, read from config.toml and overridden by the environment"""

    def __init__(
        self,
        discord_token: str,
        output_dir: str,
        guild_ids: Optional[list] = None,
        channel_id: Optional[int] = None,
        cookies_path: Optional[str] = None,
        cookie_url: Optional[str] = None,
        log_level: str = DEFAULT_LOG_LEVEL,
    ):
        self.discord_token = discord_token
        self.output_dir = output_dir
        self.guild_ids = guild_ids
        self.channel_id = channel_id
        self.cookies_path = cookies_path
        self.cookie_url = cookie_url
        self.log_level = log_level

    def __repr__(self):
        # Keep the token out of logs
        return (
            f"Config(output_dir={self.output_dir!r}, guild_ids={self.guild_ids!r}, "
            f"channel_id={self.channel_id!r}, cookies_path={self.cookies_path!r}, "
            f"cookie_url={'set' if self.cookie_url else None})"
        )

    def is_allowed_guild(self, guild_id: int) -> bool:
        if self.guild_ids is None:
            return True
        return guild_id in self.guild_ids

    @classmethod
    def load(cls, path: str = DEFAULT_CONFIG_FILE, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """Load settings from a TOML file (optional) and environment variables"""
        if environ is None:
            environ = os.environ

        values = read_config_file(path)

        token = environ.get("DISCORD_TOKEN", values.get("discord_token"))
        output_dir = environ.get("OUTPUT_DIR", values.get("output_dir"))
        if not token:
            raise ConfigError("discord_token is not set (config.toml or DISCORD_TOKEN)")
        if not output_dir:
            raise ConfigError("output_dir is not set (config.toml or OUTPUT_DIR)")
        if not isinstance(token, str) or not isinstance(output_dir, str):
            raise ConfigError("discord_token and output_dir must be strings")

        if "GUILD_IDS" in environ:
            guild_ids = parse_guild_ids(environ["GUILD_IDS"])
        else:
            guild_ids = values.get("guild_ids")
            if guild_ids is not None and not _is_id_list(guild_ids):
                raise ConfigError("guild_ids must be an array of numeric IDs")

        if "CHANNEL_ID" in environ:
            channel_id = parse_channel_id(environ["CHANNEL_ID"])
        else:
            channel_id = values.get("channel_id")
            if channel_id is not None and not _is_id(channel_id):
                raise ConfigError("channel_id must be a numeric ID")

        cookies_path = environ.get("YTDLP_COOKIES_PATH", _optional_str(values, "cookies_path"))
        if cookies_path is None and Path(DEFAULT_COOKIES_FILE).exists():
            cookies_path = DEFAULT_COOKIES_FILE

        return cls(
            discord_token=token,
            output_dir=output_dir,
            guild_ids=guild_ids,
            channel_id=channel_id,
            cookies_path=cookies_path,
            cookie_url=environ.get("COOKIE_URL", _optional_str(values, "cookie_url")) or None,
            log_level=environ.get("LOG_LEVEL", _optional_str(values, "log_level") or DEFAULT_LOG_LEVEL).upper(),
        )


def read_config_file(path: str) -> dict:
    """Return the parsed TOML table, or an empty dict when the file is absent"""
    config_path = Path(path)
    if not config_path.exists():
        return {}
    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to read {path}: {e}") from e


def parse_guild_ids(raw: str) -> list:
    """Parse GUILD_IDS as a JSON array, falling back to a single ID"""
    raw = raw.strip()
    try:
        ids = json.loads(raw)
    except ValueError:
        ids = None
    if isinstance(ids, list) and _is_id_list(ids):
        return ids

    if raw.isascii() and raw.isdigit():
        return [int(raw)]
    raise ConfigError(GUILD_IDS_HELP)


def parse_channel_id(raw: str) -> int:
    raw = raw.strip()
    if not (raw.isascii() and raw.isdigit()):
        raise ConfigError(f"CHANNEL_ID must be a numeric ID, got {raw!r}")
    return int(raw)


def _is_id(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _is_id_list(value) -> bool:
    return isinstance(value, list) and all(_is_id(v) for v in value)


def _optional_str(values: dict, key: str) -> Optional[str]:
    value = values.get(key)
    if value is not None and not isinstance(value, str):
        raise ConfigError(f"{key} must be a string")
    return value

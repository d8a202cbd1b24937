"""Configuration management for tattler."""

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .paths import get_badge_path

FOOTER_CHOICES = ("all", "unread", "participating", "options")


def get_config_path() -> Path:
    """Get the path to the tattler config file."""
    xdg_config = Path.home() / ".config"
    return xdg_config / "tattler" / "config.toml"


def get_default_config() -> str:
    """Return the default config file contents."""
    return """\
# tattler configuration

[github]
# Only needed for `tattler login --code` and for revoking tokens on logout.
# Personal access tokens (`tattler login --token`) work without them.
# client_id = ""
# client_secret = ""

[poll]
# Never poll more often than this, whatever the server suggests (seconds)
min_interval = 60

[notifications]
enabled = true
# What `tattler open-all` opens: "all", "unread", "participating" or "options"
footer = "all"
"""


@dataclass
class GitHubConfig:
    """Endpoints and OAuth application credentials for GitHub."""

    api_url: str = "https://api.github.com/"
    site_url: str = "https://github.com/"
    client_id: str = ""
    client_secret: str = ""
    scope: str = "repo"

    @property
    def has_app_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)


@dataclass
class PollConfig:
    """Polling cadence.

    min_interval is the floor for the computed poll interval. The server's
    X-Poll-Interval and the rate-limit pacing can only push it higher.
    """

    min_interval: int = 60
    connectivity_interval: float = 30.0  # how often to re-probe while offline
    timeout: float = 30.0  # per-request timeout


@dataclass
class NotificationsConfig:
    """Desktop notification settings."""

    enabled: bool = True
    footer: str = "all"  # destination for `open-all`, one of FOOTER_CHOICES


@dataclass
class BadgeConfig:
    path: Path = field(default_factory=get_badge_path)


@dataclass
class Config:
    """tattler configuration."""

    github: GitHubConfig = field(default_factory=GitHubConfig)
    poll: PollConfig = field(default_factory=PollConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    badge: BadgeConfig = field(default_factory=BadgeConfig)


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from file, or return defaults."""
    if config_path is None:
        config_path = get_config_path()

    if not config_path.exists():
        return Config()

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        # Log warning but return defaults
        print(f"Warning: Could not load config from {config_path}: {e}")
        return Config()

    return _parse_config(data)


def _parse_config(data: dict[str, Any]) -> Config:
    """Parse config dict into Config object."""
    github_data = data.get("github", {})
    # Use dataclass defaults for any unspecified keys
    github_defaults = GitHubConfig()
    github = GitHubConfig(
        **{
            name: github_data.get(name, getattr(github_defaults, name))
            for name in github_defaults.__dataclass_fields__
        }
    )
    # Joining endpoint paths relies on the trailing slash
    for attr in ("api_url", "site_url"):
        value = getattr(github, attr)
        if not value.endswith("/"):
            setattr(github, attr, value + "/")

    poll_data = data.get("poll", {})
    poll = PollConfig(
        min_interval=int(poll_data.get("min_interval", 60)),
        connectivity_interval=float(poll_data.get("connectivity_interval", 30.0)),
        timeout=float(poll_data.get("timeout", 30.0)),
    )

    notifications_data = data.get("notifications", {})
    footer = notifications_data.get("footer", "all")
    if footer not in FOOTER_CHOICES:
        print(f"Warning: unknown footer '{footer}', using 'all'")
        footer = "all"
    notifications = NotificationsConfig(
        enabled=notifications_data.get("enabled", True),
        footer=footer,
    )

    badge_data = data.get("badge", {})
    badge = BadgeConfig()
    if "path" in badge_data:
        badge = BadgeConfig(path=Path(badge_data["path"]).expanduser())

    return Config(github=github, poll=poll, notifications=notifications, badge=badge)


def ensure_config_exists() -> Path:
    """Ensure the config file exists, creating with defaults if needed."""
    config_path = get_config_path()

    if not config_path.exists():
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(get_default_config())

    return config_path

"""Path utilities for tattler."""

from pathlib import Path


def get_state_dir() -> Path:
    """Get the directory for tattler runtime state.

    Uses XDG state directory: ~/.local/state/tattler/
    """
    state_dir = Path.home() / ".local" / "state" / "tattler"
    state_dir.mkdir(parents=True, exist_ok=True)
    return state_dir


def get_log_dir() -> Path:
    """Get the directory for tattler logs: ~/.local/state/tattler/logs/"""
    log_dir = get_state_dir() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def get_log_path(name: str) -> Path:
    """Get the path to a specific log file.

    Args:
        name: Log file name (e.g., "tattler")

    Returns:
        Path to ~/.local/state/tattler/logs/{name}.log
    """
    return get_log_dir() / f"{name}.log"


def get_badge_path() -> Path:
    """Default location of the badge text file read by status bars."""
    return get_state_dir() / "badge"

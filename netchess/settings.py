"""Settings management - saves and loads user preferences."""
import json
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from .constants import ACK_TIMEOUT, HOST_ADDRESSES, JOIN_ADDRESS, PieceColor

logger = logging.getLogger(__name__)

# Settings file location (in user's home directory)
SETTINGS_DIR = Path.home() / ".netchess"
SETTINGS_FILE = SETTINGS_DIR / "settings.json"

# Default settings
DEFAULT_SETTINGS = {
    "player_name": "Player",
    "preferred_color": None,
    "host_addresses": [[host, port] for host, port in HOST_ADDRESSES],
    "join_address": list(JOIN_ADDRESS),
    "ack_timeout": ACK_TIMEOUT,
    "end_state_policy": "DECISIVE_ONLY",
    "resolution": [1200, 960],
}


def ensure_settings_dir():
    """Create settings directory if it doesn't exist."""
    SETTINGS_DIR.mkdir(parents=True, exist_ok=True)


def load_settings() -> dict:
    """Load settings merged over the defaults.

    A missing, unreadable or non-object file yields the defaults; unknown
    keys in the file are dropped.
    """
    settings = DEFAULT_SETTINGS.copy()
    if not SETTINGS_FILE.exists():
        logger.debug(f"No settings at {SETTINGS_FILE}, using defaults")
        return settings

    try:
        saved = json.loads(SETTINGS_FILE.read_text(encoding='utf-8'))
    except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
        logger.warning(f"Failed to load settings: {e}")
        return settings

    if not isinstance(saved, dict):
        logger.warning(f"Ignoring {SETTINGS_FILE}: expected a JSON object")
        return settings
    settings.update({key: value for key, value in saved.items() if key in DEFAULT_SETTINGS})
    return settings


def save_settings(settings: dict):
    """Save settings to file."""
    try:
        ensure_settings_dir()
        with open(SETTINGS_FILE, 'w', encoding='utf-8') as f:
            json.dump(settings, f, indent=2)
        logger.debug(f"Settings saved to {SETTINGS_FILE}")
    except OSError as e:
        logger.warning(f"Failed to save settings: {e}")


def get_player_name() -> str:
    """Get saved player name."""
    return load_settings().get("player_name") or DEFAULT_SETTINGS["player_name"]


def set_player_name(name: str):
    """Save player name."""
    settings = load_settings()
    settings["player_name"] = name
    save_settings(settings)


def get_preferred_color() -> Optional[PieceColor]:
    """Get the color picked last time, if any."""
    value = load_settings().get("preferred_color")
    try:
        return PieceColor(value) if value else None
    except ValueError:
        return None


def set_preferred_color(color: PieceColor):
    """Remember the picked color."""
    settings = load_settings()
    settings["preferred_color"] = color.value
    save_settings(settings)


def get_host_addresses() -> List[Tuple[str, int]]:
    """Get the listen address fallback list."""
    addresses = load_settings().get("host_addresses", DEFAULT_SETTINGS["host_addresses"])
    return [(host, int(port)) for host, port in addresses]


def get_join_address() -> Tuple[str, int]:
    """Get the address a client dials."""
    host, port = load_settings().get("join_address", DEFAULT_SETTINGS["join_address"])
    return (host, int(port))


def get_ack_timeout() -> float:
    """Seconds a sent move may wait for its acknowledgment."""
    return float(load_settings().get("ack_timeout", ACK_TIMEOUT))


def get_end_state_policy() -> str:
    """Name of the end-state reporting policy (see network.arbiter.EndStatePolicy)."""
    return load_settings().get("end_state_policy", DEFAULT_SETTINGS["end_state_policy"])


def get_resolution() -> Tuple[int, int]:
    """Get saved resolution as tuple."""
    settings = load_settings()
    res = settings.get("resolution", DEFAULT_SETTINGS["resolution"])
    return (res[0], res[1])

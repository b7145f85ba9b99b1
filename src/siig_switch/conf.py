"""User settings and config persistence for siig-switch.

Config is stored at ~/.config/siig-switch/config.json (XDG-compliant).

Only the transfer timeout is tunable.  The device IDs and the report bytes
are fixed by the hardware and deliberately absent here.

Usage:
    from siig_switch.conf import get_timeout_ms, save_timeout_ms

    get_timeout_ms()        # Set Report timeout in ms (default 100)
    save_timeout_ms(250)

    # Low-level config access
    from siig_switch.conf import load_config, save_config
"""
from __future__ import annotations

import json
import logging
import os

from .protocol import DEFAULT_TIMEOUT_MS

log = logging.getLogger(__name__)

# =========================================================================
# Config file location (XDG-compliant)
# =========================================================================

_XDG_CONFIG = os.environ.get('XDG_CONFIG_HOME', os.path.expanduser('~/.config'))
CONFIG_DIR = os.path.join(_XDG_CONFIG, 'siig-switch')
CONFIG_PATH = os.path.join(CONFIG_DIR, 'config.json')


# =========================================================================
# Low-level config persistence
# =========================================================================

def load_config() -> dict:
    """Load user config from disk. Returns empty dict on missing/corrupt file."""
    try:
        with open(CONFIG_PATH, 'r') as f:
            config = json.load(f)
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return {}
    if not isinstance(config, dict):
        log.warning("Ignoring malformed config at %s", CONFIG_PATH)
        return {}
    return config


def save_config(config: dict):
    """Save user config to disk."""
    os.makedirs(CONFIG_DIR, exist_ok=True)
    with open(CONFIG_PATH, 'w') as f:
        json.dump(config, f, indent=2)


# =========================================================================
# Transfer timeout
# =========================================================================

def get_timeout_ms() -> int:
    """Get saved control-transfer timeout, defaulting to 100 ms."""
    value = load_config().get('timeout_ms', DEFAULT_TIMEOUT_MS)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        log.warning("Invalid timeout_ms %r in config, using %d", value, DEFAULT_TIMEOUT_MS)
        return DEFAULT_TIMEOUT_MS
    return value


def save_timeout_ms(timeout_ms: int):
    """Persist control-transfer timeout to config."""
    if timeout_ms <= 0:
        raise ValueError(f"timeout must be positive, got {timeout_ms}")
    config = load_config()
    config['timeout_ms'] = timeout_ms
    save_config(config)

"""Settings and config persistence for faff.

Config is stored at ~/.config/faff/config.json (XDG-compliant) and only
supplies defaults: command-line flags always win.

Usage:
    from faff.conf import build_selector, build_link_settings

    selector = build_selector(serial="ABC123")   # VID:PID from config/defaults
    link = build_link_settings()                 # interface, endpoints, timeout

    # Low-level config access
    from faff.conf import load_config, save_config, set_config_value
"""
from __future__ import annotations

import json
import logging
import os
from typing import Any, Callable, Dict, Optional

from .constants import (
    DEFAULT_ENDPOINT_RX,
    DEFAULT_ENDPOINT_TX,
    DEFAULT_MAX_BUSY_POLLS,
    DEFAULT_TIMEOUT_MS,
    DEFAULT_USB_INTERFACE,
    DEFAULT_USB_PID,
    DEFAULT_USB_VID,
)
from .core.models import DeviceSelector, LinkSettings, ProgrammingSettings

log = logging.getLogger(__name__)

# =========================================================================
# Config file location (XDG-compliant)
# =========================================================================

_XDG_CONFIG = os.environ.get('XDG_CONFIG_HOME', os.path.expanduser('~/.config'))
CONFIG_DIR = os.path.join(_XDG_CONFIG, 'faff')
CONFIG_PATH = os.path.join(CONFIG_DIR, 'config.json')


def parse_hex(text: str) -> int:
    """Parse a VID/PID: hexadecimal, with or without a 0x prefix."""
    return int(text, 16)


def parse_int(text: str) -> int:
    """Parse an integer with an optional 0x/0o/0b prefix."""
    return int(text, 0)


def _parse_serial(text: str) -> Optional[str]:
    return text or None


# key -> (parser for CLI text, built-in default)
CONFIG_KEYS: Dict[str, tuple[Callable[[str], Any], Any]] = {
    'usb_vid': (parse_hex, DEFAULT_USB_VID),
    'usb_pid': (parse_hex, DEFAULT_USB_PID),
    'usb_serial': (_parse_serial, None),
    'usb_interface': (parse_int, DEFAULT_USB_INTERFACE),
    'endpoint_tx': (parse_int, DEFAULT_ENDPOINT_TX),
    'endpoint_rx': (parse_int, DEFAULT_ENDPOINT_RX),
    'timeout_ms': (parse_int, DEFAULT_TIMEOUT_MS),
    'max_busy_polls': (parse_int, DEFAULT_MAX_BUSY_POLLS),
}


# =========================================================================
# Low-level config persistence
# =========================================================================

def load_config() -> dict:
    """Load user config from disk. Returns empty dict on missing/corrupt file."""
    try:
        with open(CONFIG_PATH, 'r') as f:
            config = json.load(f)
    except FileNotFoundError:
        return {}
    except (json.JSONDecodeError, OSError) as e:
        log.warning("Ignoring unreadable config %s: %s", CONFIG_PATH, e)
        return {}
    if not isinstance(config, dict):
        log.warning("Ignoring config %s: not a JSON object", CONFIG_PATH)
        return {}
    return config


def save_config(config: dict):
    """Save user config to disk."""
    os.makedirs(CONFIG_DIR, exist_ok=True)
    with open(CONFIG_PATH, 'w') as f:
        json.dump(config, f, indent=2)


def get_value(key: str, config: Optional[dict] = None) -> Any:
    """Config value for *key*, falling back to the built-in default."""
    if key not in CONFIG_KEYS:
        raise KeyError(key)
    if config is None:
        config = load_config()
    return config.get(key, CONFIG_KEYS[key][1])


def set_config_value(key: str, text: str) -> Any:
    """Parse *text* for *key* and persist it.  Returns the stored value.

    Raises:
        KeyError: Unknown key.
        ValueError: *text* does not parse for that key.
    """
    if key not in CONFIG_KEYS:
        raise KeyError(key)
    parser = CONFIG_KEYS[key][0]
    value = parser(text)
    config = load_config()
    if value is None:
        config.pop(key, None)
    else:
        config[key] = value
    save_config(config)
    log.info("Saved %s=%r to %s", key, value, CONFIG_PATH)
    return value


def effective_config(config: Optional[dict] = None) -> Dict[str, Any]:
    """Every known key with its effective (config or default) value."""
    if config is None:
        config = load_config()
    return {key: get_value(key, config) for key in CONFIG_KEYS}


# =========================================================================
# Settings objects
# =========================================================================

def build_selector(vendor_id: Optional[int] = None, product_id: Optional[int] = None,
                   serial: Optional[str] = None,
                   config: Optional[dict] = None) -> DeviceSelector:
    """Build the device selector: explicit arguments > config > defaults.

    An explicit empty *serial* clears any configured one, so the first
    VID:PID match is used.
    """
    if config is None:
        config = load_config()
    if serial is None:
        serial = get_value('usb_serial', config)
    return DeviceSelector(
        vendor_id=vendor_id if vendor_id is not None else int(get_value('usb_vid', config)),
        product_id=product_id if product_id is not None else int(get_value('usb_pid', config)),
        serial=serial or None,
    )


def build_link_settings(config: Optional[dict] = None) -> LinkSettings:
    if config is None:
        config = load_config()
    return LinkSettings(
        interface=int(get_value('usb_interface', config)),
        endpoint_tx=int(get_value('endpoint_tx', config)),
        endpoint_rx=int(get_value('endpoint_rx', config)),
        timeout_ms=int(get_value('timeout_ms', config)),
    )


def build_programming_settings(config: Optional[dict] = None) -> ProgrammingSettings:
    """Programming settings; ``max_busy_polls`` of 0 means poll forever."""
    if config is None:
        config = load_config()
    max_polls = int(get_value('max_busy_polls', config))
    return ProgrammingSettings(max_busy_polls=max_polls or None)

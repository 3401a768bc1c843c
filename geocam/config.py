from __future__ import annotations
import copy, json, logging, os, tempfile
from typing import Any, Dict, List

log = logging.getLogger(__name__)

_DATA_HOME = os.path.expanduser("~/.local/share/geocam")

# a config file only needs the keys it overrides
DEFAULT: Dict[str, Any] = {
    "camera": {"device_index": 0, "width": 1920, "height": 1080, "flash_mode": "auto", "jpeg_quality": 95},
    "watermark": {
        "font_path": "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
        "font_size": 24,
        "inset_x": 24,
        "inset_y": 24,
        "fill": "#FFFFFF",
        "stroke": "#000000",
        "stroke_width": 2,
        "keep_raw": False,
    },
    "storage": {
        "raw_dir": os.path.join(_DATA_HOME, "raw"),
        "photos_dir": os.path.join(_DATA_HOME, "photos"),
        "gallery_dir": os.path.join(_DATA_HOME, "gallery"),
        "gallery_db": os.path.join(_DATA_HOME, "gallery.db"),
    },
    "location": {"latitude": 0.0, "longitude": 0.0, "service_enabled": True},
    "share": {"command": "xdg-open"},
}

CONF_ENV = "GEOCAM_CONFIG"
# searched in order after $GEOCAM_CONFIG; saves go to the first writable one
CONF_PATHS = (
    "/etc/geocam/config.json",
    os.path.expanduser("~/.config/geocam/config.json"),
)


def config_paths() -> List[str]:
    env = os.environ.get(CONF_ENV)
    return ([env] if env else []) + list(CONF_PATHS)


def load_config(path: str | None = None) -> Dict[str, Any]:
    for p in [path] if path else config_paths():
        try:
            with open(p, "r") as f:
                return _merge(DEFAULT, json.load(f))
        except FileNotFoundError:
            continue
        except (OSError, ValueError) as e:
            log.warning("ignoring unreadable config %s: %s", p, e)
    return copy.deepcopy(DEFAULT)


def save_config(cfg: Dict[str, Any], path: str | None = None) -> str:
    if path is None:
        writable = [p for p in config_paths() if _dir_writable(os.path.dirname(p))]
        # not persisted across reboot
        path = writable[0] if writable else os.path.join(tempfile.gettempdir(), "geocam.json")
    tmp = path + ".tmp"
    with open(tmp, "w") as f:
        json.dump(cfg, f, indent=2)
    os.replace(tmp, path)
    return path


def _dir_writable(d: str) -> bool:
    try:
        os.makedirs(d, exist_ok=True)
    except OSError:
        return False
    return os.access(d, os.W_OK)


def _merge(base: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in patch.items():
        nested = isinstance(v, dict) and isinstance(out.get(k), dict)
        out[k] = _merge(out[k], v) if nested else v
    return out

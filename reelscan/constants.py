from typing import Any, Dict, List

LOG_LEVELS: List[str] = ["verbose", "info", "warn", "error"]

DEFAULT_CONFIG: Dict[str, Any] = {
    "default_timeout_in_milliseconds": 30000.0,
    "browser_executable": None,
    "chromium_options": {},
    "port": None,
    "device_scale_factor": 1.0,
    "log_level": "info",
}

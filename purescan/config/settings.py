"""Configuration dataclass and loading utilities.

Provides a strongly-typed configuration object that is injected into services
instead of relying on a global module-level dictionary. Values come from
``DEFAULT_CONFIG``, then ``config.json``, then the environment.
"""
from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional
import copy, json, os, logging
from .defaults import DEFAULT_CONFIG
from .env_config import load_environment_config, EnvironmentConfig, EnvironmentError

def _default(key: str):
    return field(default_factory=lambda: copy.deepcopy(DEFAULT_CONFIG[key]))

@dataclass(slots=True)
class Config:
    # Camera
    environment_camera_index: int = DEFAULT_CONFIG["environment_camera_index"]
    user_camera_index: int = DEFAULT_CONFIG["user_camera_index"]
    camera_width: int = DEFAULT_CONFIG["camera_width"]
    camera_height: int = DEFAULT_CONFIG["camera_height"]
    camera_fps: int = DEFAULT_CONFIG["camera_fps"]

    # Detector
    detector_model: str = DEFAULT_CONFIG["detector_model"]
    detector_preferred_backend: str = DEFAULT_CONFIG["detector_preferred_backend"]
    detector_fallback_backend: str = DEFAULT_CONFIG["detector_fallback_backend"]
    detection_max_results: int = DEFAULT_CONFIG["detection_max_results"]
    detection_score_threshold: float = DEFAULT_CONFIG["detection_score_threshold"]

    # Stabilizer
    detection_sample_interval_ms: int = DEFAULT_CONFIG["detection_sample_interval_ms"]
    detection_grace_window_ms: int = DEFAULT_CONFIG["detection_grace_window_ms"]
    detection_tick_interval_ms: int = DEFAULT_CONFIG["detection_tick_interval_ms"]
    detection_allowlist: List[str] = _default("detection_allowlist")
    detection_label_map: Dict[str, str] = _default("detection_label_map")
    detection_generic_label: str = DEFAULT_CONFIG["detection_generic_label"]
    overlay_placeholder_text: str = DEFAULT_CONFIG["overlay_placeholder_text"]

    # Capture
    capture_jpeg_quality: int = DEFAULT_CONFIG["capture_jpeg_quality"]
    capture_filename: str = DEFAULT_CONFIG["capture_filename"]
    capture_burn_overlay: bool = DEFAULT_CONFIG["capture_burn_overlay"]

    # Analysis
    gemini_api_key: str = DEFAULT_CONFIG["gemini_api_key"]
    gemini_model: str = DEFAULT_CONFIG["gemini_model"]
    gemini_timeout: int = DEFAULT_CONFIG["gemini_timeout"]
    gemini_temperature: float = DEFAULT_CONFIG["gemini_temperature"]
    gemini_max_tokens: int = DEFAULT_CONFIG["gemini_max_tokens"]
    analysis_prompt: str = DEFAULT_CONFIG["analysis_prompt"]
    demo_mode: bool = DEFAULT_CONFIG["demo_mode"]
    demo_delay_s: float = DEFAULT_CONFIG["demo_delay_s"]

    # Logging
    debug: bool = DEFAULT_CONFIG["debug"]
    log_level: str = DEFAULT_CONFIG["log_level"]
    log_dir: str = DEFAULT_CONFIG["log_dir"]
    structured_logging: bool = DEFAULT_CONFIG["structured_logging"]

    # True when the API key came from the environment and must not be persisted
    _has_secure_api_key: bool = False

    # Arbitrary extra values retained for forward compatibility
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        extra = d.pop("extra", {})
        d.pop("_has_secure_api_key", None)
        d.update(extra)
        return d

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self, key, self.extra.get(key, default))

    def camera_index_for(self, facing: str) -> int:
        """Camera device index for a facing ("environment" or "user")."""
        if facing == "user":
            return self.user_camera_index
        return self.environment_camera_index


_INTERNAL_FIELDS = ('extra', '_has_secure_api_key')


def load_config(path: str = "config.json", env_file: Optional[str] = None) -> Config:
    """Load configuration from a JSON file with environment overrides.

    Unreadable or malformed files are logged and replaced by defaults; the
    application always gets a usable ``Config``.

    Args:
        path: Path to config.json file
        env_file: Path to .env file (optional)
    """
    data: Dict[str, Any] = {}
    env_config: Optional[EnvironmentConfig] = None

    try:
        env_config = load_environment_config(env_file)
    except EnvironmentError as e:
        logging.warning(f"Environment configuration failed: {e}")

    if os.path.isfile(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                loaded_data = json.load(f)
            if not isinstance(loaded_data, dict):
                logging.error(f"Configuration file '{path}' does not contain a valid JSON object, using defaults")
            else:
                data = loaded_data
                logging.info(f"Successfully loaded configuration from '{path}'")
        except json.JSONDecodeError as e:
            logging.error(f"Failed to parse JSON configuration file '{path}': {e}. Using defaults.")
        except OSError as e:
            logging.error(f"Error reading configuration file '{path}': {e}. Using defaults.")
    else:
        logging.info(f"Configuration file '{path}' does not exist. Using defaults.")

    merged = {**copy.deepcopy(DEFAULT_CONFIG), **data}
    if env_config:
        merged = _apply_environment_overrides(merged, env_config)
    merged = _sanitize_config_values(merged)

    known = [k for k in Config.__dataclass_fields__ if k not in _INTERNAL_FIELDS]
    extra = {k: v for k, v in merged.items() if k not in Config.__dataclass_fields__}
    if extra:
        logging.info(f"Found extra configuration keys: {list(extra.keys())}")

    try:
        cfg = Config(**{k: merged[k] for k in known if k in merged}, extra=extra)
    except TypeError as e:
        logging.error(f"Failed to create configuration object: {e}. Falling back to pure defaults.")
        cfg = Config()

    cfg._has_secure_api_key = env_config is not None and env_config.is_api_key_configured
    return cfg


def save_config(cfg: Config, path: str = "config.json") -> None:
    """Save configuration to a JSON file.

    API keys provided by the environment are never written to disk.
    """
    config_dict = cfg.to_dict()
    if cfg._has_secure_api_key:
        config_dict["gemini_api_key"] = ""
        logging.info("API key excluded from saved config (using environment variable)")

    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(config_dict, f, indent=2, ensure_ascii=False)
        logging.info(f"Configuration saved successfully to '{path}'")
    except OSError as e:
        logging.error(f"OS error saving configuration file '{path}': {e}")


def _apply_environment_overrides(config_dict: Dict[str, Any], env_config: EnvironmentConfig) -> Dict[str, Any]:
    """Apply environment variable overrides to configuration."""
    if env_config.gemini_api_key:
        config_dict["gemini_api_key"] = env_config.gemini_api_key
    if env_config.gemini_model:
        config_dict["gemini_model"] = env_config.gemini_model
    if env_config.gemini_timeout is not None:
        config_dict["gemini_timeout"] = env_config.gemini_timeout
    if env_config.demo_mode is not None:
        config_dict["demo_mode"] = env_config.demo_mode
    if env_config.debug_logging:
        config_dict["debug"] = True
        config_dict["log_level"] = "DEBUG"

    logging.debug("Applied environment variable overrides to configuration")
    return config_dict


def _clamp(value: Any, low: float, high: float, key: str) -> Any:
    try:
        number = type(DEFAULT_CONFIG[key])(value)
    except (TypeError, ValueError):
        logging.warning(f"Invalid value for '{key}': {value!r}. Using default.")
        return DEFAULT_CONFIG[key]
    return max(low, min(high, number))


def _sanitize_config_values(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Clamp numeric settings into their valid ranges."""
    config_dict["detection_score_threshold"] = _clamp(config_dict["detection_score_threshold"], 0.0, 1.0, "detection_score_threshold")
    config_dict["detection_max_results"] = _clamp(config_dict["detection_max_results"], 1, 300, "detection_max_results")
    config_dict["detection_sample_interval_ms"] = _clamp(config_dict["detection_sample_interval_ms"], 0, 60000, "detection_sample_interval_ms")
    config_dict["detection_grace_window_ms"] = _clamp(config_dict["detection_grace_window_ms"], 0, 60000, "detection_grace_window_ms")
    config_dict["detection_tick_interval_ms"] = _clamp(config_dict["detection_tick_interval_ms"], 10, 10000, "detection_tick_interval_ms")
    config_dict["capture_jpeg_quality"] = _clamp(config_dict["capture_jpeg_quality"], 1, 100, "capture_jpeg_quality")

    if not isinstance(config_dict.get("detection_allowlist"), list):
        logging.warning("detection_allowlist must be a list. Using default.")
        config_dict["detection_allowlist"] = copy.deepcopy(DEFAULT_CONFIG["detection_allowlist"])
    if not isinstance(config_dict.get("detection_label_map"), dict):
        logging.warning("detection_label_map must be an object. Using default.")
        config_dict["detection_label_map"] = copy.deepcopy(DEFAULT_CONFIG["detection_label_map"])

    return config_dict

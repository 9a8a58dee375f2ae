"""Default configuration values."""

from typing import Any, Dict

DEFAULT_CONFIG: Dict[str, Any] = {
    # Camera settings
    "environment_camera_index": 0,
    "user_camera_index": 1,
    "camera_width": 1280,
    "camera_height": 720,
    "camera_fps": 30,

    # Detector settings
    "detector_model": "yolo11n.pt",
    "detector_preferred_backend": "auto",  # auto -> cuda, then mps
    "detector_fallback_backend": "cpu",
    "detection_max_results": 20,
    "detection_score_threshold": 0.20,  # detect generously, the stabilizer filters

    # Stabilizer settings (milliseconds)
    "detection_sample_interval_ms": 2000,
    "detection_grace_window_ms": 3000,
    "detection_tick_interval_ms": 100,

    # COCO labels that are worth showing over a food photo
    "detection_allowlist": [
        "banana", "apple", "sandwich", "orange", "broccoli", "carrot",
        "hot dog", "pizza", "donut", "cake", "bowl", "cup", "bottle", "wine glass",
    ],
    "detection_label_map": {
        "banana": "Fruit",
        "apple": "Fruit",
        "orange": "Fruit",
        "broccoli": "Vegetable",
        "carrot": "Vegetable",
        "sandwich": "Prepared food",
        "hot dog": "Prepared food",
        "pizza": "Prepared food",
        "donut": "Baked goods",
        "cake": "Baked goods",
        "bowl": "Food bowl",
        "cup": "Beverage",
        "bottle": "Beverage",
        "wine glass": "Beverage",
    },
    "detection_generic_label": "Food item",
    "overlay_placeholder_text": "Searching for food...",

    # Capture settings
    "capture_jpeg_quality": 80,  # 0..100
    "capture_filename": "camera-capture.jpg",
    "capture_burn_overlay": True,

    # Analysis (Gemini) settings
    "gemini_api_key": "",
    "gemini_model": "gemini-2.5-flash",
    "gemini_timeout": 30,
    "gemini_temperature": 0.4,
    "gemini_max_tokens": 1024,
    "analysis_prompt": (
        "Analyze this food image for quality and freshness. "
        "Return ONLY a JSON object with this structure: "
        '{ "score": number (0-100), "text": "short analysis string" }. '
        'If it\'s not food, return score 0 and text "Not food detected".'
    ),
    "demo_mode": False,
    "demo_delay_s": 3.0,

    # Debug and Logging Settings
    "debug": False,
    "log_level": "INFO",
    "log_dir": "logs",
    "structured_logging": False,
}

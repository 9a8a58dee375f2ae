"""Main entry point for PureScan."""

import argparse
import asyncio
import logging
import tkinter as tk

from .config.settings import load_config
from .core.logging_config import configure_logging
from .services.analysis_service import AnalysisService
from .services.detector import DetectorProvider
from .services.session_controller import SessionController
from .ui.camera_window import CameraWindow

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="PureScan food scanner")
    parser.add_argument("--config", default="config.json", help="Path to config.json")
    parser.add_argument("--env-file", default=None, help="Path to .env file")
    parser.add_argument("--live", action="store_true", help="Open the camera with live detection on")
    return parser.parse_args(argv)


async def run_app(config, open_live: bool = False) -> None:
    root = tk.Tk()
    session = SessionController(config)
    window = CameraWindow(root, config, session, AnalysisService(config))
    if open_live:
        window.live_var.set(True)
        window._on_open()
    try:
        await window.run()
    finally:
        try:
            root.destroy()
        except tk.TclError:
            pass


def main(argv=None) -> int:
    args = parse_args(argv)
    config = load_config(args.config, args.env_file)
    configure_logging(
        log_level=config.log_level,
        log_dir=config.log_dir,
        structured_logging=config.structured_logging
    )
    logger.info("Starting PureScan")

    try:
        asyncio.run(run_app(config, open_live=args.live))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        DetectorProvider.get_instance().reset()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

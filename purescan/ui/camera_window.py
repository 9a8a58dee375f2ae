"""Tkinter camera window hosting one scan session.

Tk has its own event loop; here it is pumped from asyncio so that session
commands, detection ticks and analysis requests share a single loop.
"""

import asyncio
import logging
import tkinter as tk
from tkinter import ttk, filedialog
from typing import Optional, Set

import cv2
from PIL import Image, ImageTk

from ..config.settings import Config
from ..core.entities import AnalysisResult, CaptureArtifact
from ..core.exceptions import AIServiceError
from ..services.analysis_service import AnalysisService
from ..services.overlay_renderer import composite
from ..services.session_controller import SessionController, SessionEvent, SessionState, DetectorStatus

logger = logging.getLogger(__name__)

VIEW_WIDTH = 640
VIEW_HEIGHT = 480
UI_INTERVAL_S = 1 / 30

BAND_COLORS = {
    "premium": "#34d399",
    "average": "#facc15",
    "hazardous": "#f87171",
}


class CameraWindow:
    """Viewfinder, capture trigger and analysis result for one scan."""

    def __init__(self, root: tk.Tk, config: Config, session: SessionController, analysis: AnalysisService):
        self.root = root
        self.config = config
        self.session = session
        self.analysis = analysis

        self._running = True
        self._tasks: Set[asyncio.Task] = set()
        self._photo: Optional[ImageTk.PhotoImage] = None
        self._analyzing = False

        self.root.title("PureScan")
        self.root.protocol("WM_DELETE_WINDOW", self._on_window_close)
        self._build_ui()

        self.session.add_listener(self._on_session_event)
        self.session.add_capture_listener(self._on_artifact)

    def _build_ui(self):
        main_frame = ttk.Frame(self.root, padding="10")
        main_frame.pack(fill='both', expand=True)

        self.view = tk.Label(main_frame, bg='black', width=VIEW_WIDTH, height=VIEW_HEIGHT)
        self.view.pack()

        self.status_var = tk.StringVar(value="Camera closed")
        ttk.Label(main_frame, textvariable=self.status_var).pack(anchor='w', pady=(5, 0))

        toggles = ttk.Frame(main_frame)
        toggles.pack(fill='x', pady=(5, 0))

        self.live_var = tk.BooleanVar(value=False)
        ttk.Checkbutton(toggles, text="Live detection", variable=self.live_var,
                        command=self._on_live_toggle).pack(side='left')

        self.burn_var = tk.BooleanVar(value=self.config.capture_burn_overlay)
        ttk.Checkbutton(toggles, text="Show boxes in photo", variable=self.burn_var).pack(side='left', padx=(10, 0))

        self.demo_var = tk.BooleanVar(value=self.analysis.demo_mode)
        ttk.Checkbutton(toggles, text="Demo mode", variable=self.demo_var,
                        command=self.analysis.toggle_demo_mode).pack(side='left', padx=(10, 0))

        buttons = ttk.Frame(main_frame)
        buttons.pack(fill='x', pady=(10, 0))

        self.open_button = ttk.Button(buttons, text="Open Camera", command=self._on_open)
        self.open_button.pack(side='left')
        self.capture_button = ttk.Button(buttons, text="Capture", command=self._on_capture, state='disabled')
        self.capture_button.pack(side='left', padx=(5, 0))
        self.retry_button = ttk.Button(buttons, text="Retry Access", command=self._on_retry)
        self.upload_button = ttk.Button(buttons, text="Or upload from device/files", command=self._on_upload)
        self.upload_button.pack(side='left', padx=(5, 0))
        ttk.Button(buttons, text="Close", command=self._on_close).pack(side='right')

        self.result_label = tk.Label(main_frame, text="", anchor='w', justify='left', wraplength=VIEW_WIDTH)
        self.result_label.pack(fill='x', pady=(10, 0))

    # ----------------------------------------------------------------- loop

    async def run(self) -> None:
        """Pump Tk and refresh the viewfinder until the window closes."""
        try:
            while self._running:
                self.root.update()
                self._refresh_viewfinder()
                self._refresh_controls()
                await asyncio.sleep(UI_INTERVAL_S)
        except tk.TclError:
            logger.info("Window destroyed")
        finally:
            await self.session.close()
            for task in list(self._tasks):
                task.cancel()

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _refresh_viewfinder(self) -> None:
        handle = self.session.handle
        frame = handle.current_frame() if handle is not None else None
        if frame is None:
            return

        if self.session.state is SessionState.SAMPLING:
            frame = composite(frame, self.session.overlay.snapshot())

        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        image = Image.fromarray(rgb)
        image.thumbnail((VIEW_WIDTH, VIEW_HEIGHT))
        self._photo = ImageTk.PhotoImage(image)
        self.view.configure(image=self._photo, width=image.width, height=image.height)

    def _refresh_controls(self) -> None:
        self.capture_button.configure(state='normal' if self.session.capture_enabled else 'disabled')

    # ------------------------------------------------------------- commands

    def _on_open(self):
        self.result_label.configure(text="")
        self._spawn(self.session.open(live_detection=self.live_var.get()))

    def _on_retry(self):
        self._spawn(self.session.retry())

    def _on_close(self):
        self._spawn(self.session.close())

    def _on_live_toggle(self):
        self._spawn(self.session.set_live_detection(self.live_var.get()))

    def _on_capture(self):
        # Disable straight away so one click yields one capture
        self.capture_button.configure(state='disabled')
        self._spawn(self.session.capture(burn_overlay=self.burn_var.get()))

    def _on_upload(self):
        path = filedialog.askopenfilename(
            parent=self.root,
            title="Select food image",
            filetypes=[("Images", "*.jpg *.jpeg *.png *.webp *.bmp"), ("All files", "*.*")]
        )
        if path:
            self._spawn(self.session.select_file(path))

    def _on_window_close(self):
        self._running = False

    # -------------------------------------------------------------- events

    def _on_session_event(self, event: SessionEvent) -> None:
        if event.state is SessionState.PERMISSION_ERROR:
            self.status_var.set("Camera access unavailable. Check camera permissions, or upload a photo instead.")
            self.retry_button.pack(side='left', padx=(5, 0), before=self.upload_button)
            return

        self.retry_button.pack_forget()
        if event.error is not None:
            self.status_var.set(f"Error: {event.message or event.error}")
            return
        if event.state is SessionState.FILE_FALLBACK:
            self.status_var.set(f"Using {event.message}. Open Camera to scan again.")
            return

        status = event.state.value.replace('_', ' ').capitalize()
        if event.detector_status is DetectorStatus.LOADING:
            status += " - loading detector..."
        elif event.detector_status is DetectorStatus.FAILED and self.session.live_detection:
            status += " - live detection unavailable"
        self.status_var.set(status)

    def _on_artifact(self, artifact: CaptureArtifact) -> None:
        if self._analyzing:
            return
        self._spawn(self._analyze(artifact))

    async def _analyze(self, artifact: CaptureArtifact) -> None:
        self._analyzing = True
        self.result_label.configure(text="Analyzing...", fg='black')
        try:
            result = await self.analysis.analyze_async(artifact)
        except AIServiceError as e:
            self.result_label.configure(text=f"Analysis failed: {e}", fg=BAND_COLORS["hazardous"])
            return
        finally:
            self._analyzing = False
        self._show_result(result)

    def _show_result(self, result: AnalysisResult) -> None:
        self.result_label.configure(
            text=f"{result.band.value.upper()}  {result.score}/100\n{result.text}",
            fg=BAND_COLORS[result.band.value]
        )

"""Gemini food quality analysis of captured images."""

import asyncio
import json
import logging
import re
from typing import Any, Dict, Optional

from google import genai
from google.genai import types

from ..config.settings import Config
from ..core.entities import AnalysisResult, CaptureArtifact, QualityBand
from ..core.exceptions import AIServiceError

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)

DEMO_RESULT_TEXT = "PERFECT QUALITY. No contaminants detected. Optimal freshness confirmed."


def quality_band(score: int) -> QualityBand:
    """Premium from 70, average from 30, hazardous below."""
    if score >= 70:
        return QualityBand.PREMIUM
    if score >= 30:
        return QualityBand.AVERAGE
    return QualityBand.HAZARDOUS


def parse_analysis_text(text: str) -> AnalysisResult:
    """Parse the model's JSON reply, tolerating Markdown code fences.

    Raises:
        AIServiceError: If the reply is not a JSON object
    """
    cleaned = _CODE_FENCE.sub("", text or "").strip()
    try:
        data: Dict[str, Any] = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise AIServiceError(f"Unparsable analysis response: {e}") from e
    if not isinstance(data, dict):
        raise AIServiceError("Analysis response is not a JSON object")

    raw_score = data.get("score")
    if isinstance(raw_score, (int, float)) and not isinstance(raw_score, bool):
        score = int(round(max(0.0, min(100.0, float(raw_score)))))
    else:
        score = 0

    return AnalysisResult(
        score=score,
        text=str(data.get("text") or "Analysis failed"),
        band=quality_band(score)
    )


class AnalysisService:
    """Sends one capture artifact to Gemini and returns a quality assessment."""

    def __init__(self, config: Config):
        self.config = config
        self.demo_mode = config.demo_mode
        self._client: Optional[genai.Client] = None
        self._last_error: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.config.gemini_api_key and self.config.gemini_api_key.strip())

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    def toggle_demo_mode(self) -> bool:
        self.demo_mode = not self.demo_mode
        logger.info(f"Demo mode {'enabled' if self.demo_mode else 'disabled'}")
        return self.demo_mode

    def initialize(self) -> bool:
        """Create the Gemini client. Returns False when no API key is configured."""
        if not self.is_configured:
            self._last_error = "API key is empty"
            logger.error("Gemini API key is not configured")
            return False

        self._client = genai.Client(
            api_key=self.config.gemini_api_key,
            http_options=types.HttpOptions(timeout=int(self.config.gemini_timeout * 1000))
        )
        self._last_error = None
        logger.info(f"Gemini analysis initialized with model: {self.config.gemini_model}")
        return True

    def analyze(self, artifact: CaptureArtifact) -> AnalysisResult:
        """Blocking analysis call.

        Raises:
            AIServiceError: Missing API key, API failure or unusable reply
        """
        if self._client is None and not self.initialize():
            raise AIServiceError("Gemini API key is not configured")

        image_part = types.Part.from_bytes(data=artifact.data, mime_type=artifact.mime_type)
        generation_config = types.GenerateContentConfig(
            temperature=self.config.gemini_temperature,
            max_output_tokens=self.config.gemini_max_tokens
        )

        logger.info(f"Sending {artifact.filename} ({len(artifact.data)} bytes) for analysis")
        try:
            response = self._client.models.generate_content(
                model=self.config.gemini_model,
                contents=[self.config.analysis_prompt, image_part],
                config=generation_config
            )
        except Exception as e:
            self._last_error = str(e)
            logger.error(f"Gemini request failed: {e}", exc_info=True)
            raise AIServiceError(f"Analysis request failed: {e}") from e

        text = getattr(response, "text", None)
        if not text:
            self._last_error = "Empty response"
            raise AIServiceError("Analysis returned an empty response")

        result = parse_analysis_text(text)
        logger.info(f"Analysis result: score={result.score} band={result.band.value}")
        return result

    async def analyze_async(self, artifact: CaptureArtifact) -> AnalysisResult:
        """Non-blocking analysis for the event loop; honours demo mode."""
        if self.demo_mode:
            await asyncio.sleep(self.config.demo_delay_s)
            return AnalysisResult(score=100, text=DEMO_RESULT_TEXT, band=QualityBand.PREMIUM)
        return await asyncio.to_thread(self.analyze, artifact)

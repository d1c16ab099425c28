import base64
import binascii
import logging
from typing import Dict, Optional

import requests

from mailbridge.api.errors import ApiError

logger = logging.getLogger(__name__)

TRANSCRIPTION_TIMEOUT = 60
AUDIO_FILENAME = "audio.webm"
AUDIO_CONTENT_TYPE = "audio/webm"


class VoiceTranscriber:
    """Speech-to-text through an OpenAI-compatible /audio/transcriptions endpoint."""

    def __init__(self, config, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    def transcribe(self, audio_b64: Optional[str]) -> Dict[str, str]:
        """
        Args:
            audio_b64: base64-encoded webm recording from the browser

        Returns:
            {"text": transcript}
        """
        if not audio_b64:
            raise ApiError("No audio data provided", 500)

        try:
            audio = base64.b64decode(audio_b64, validate=True)
        except (binascii.Error, ValueError):
            raise ApiError("Invalid audio encoding", 400)

        if not self.config.OPENAI_API_KEY:
            raise ApiError("Transcription API key not configured", 500)

        logger.info(f"[VOICE] Transcribing {len(audio)} bytes")
        try:
            response = self.session.post(
                self.config.TRANSCRIPTION_URL,
                headers={"Authorization": f"Bearer {self.config.OPENAI_API_KEY}"},
                files={"file": (AUDIO_FILENAME, audio, AUDIO_CONTENT_TYPE)},
                data={"model": self.config.TRANSCRIPTION_MODEL},
                timeout=TRANSCRIPTION_TIMEOUT,
            )
        except requests.RequestException as e:
            logger.error(f"[VOICE] Transcription request failed: {type(e).__name__}")
            raise ApiError(f"Transcription API error: {e}", 500) from e

        if not response.ok:
            logger.error(f"[VOICE] Transcription API error: {response.status_code}")
            raise ApiError(f"Transcription API error: {response.text[:500]}", 500)

        text = response.json().get("text", "")
        logger.info(f"[OK] [VOICE] Transcription successful ({len(text)} chars)")
        return {"text": text}

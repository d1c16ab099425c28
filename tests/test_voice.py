import base64
from unittest.mock import MagicMock

import pytest

from mailbridge.api.deps import get_cognito_verifier
from mailbridge.auth.jwt_service import TokenVerificationError
from tests.fakes import FakeResponse

VOICE = "/functions/v1/voice-to-text"
TRANSCRIPTION_URL = "https://api.openai.com/v1/audio/transcriptions"
AUDIO = base64.b64encode(b"\x1aE\xdf\xa3webm-bytes").decode()


@pytest.fixture
def verifier(app):
    mock = MagicMock()
    mock.verify.return_value = {"sub": "cognito-sub", "email": "a@b.com", "token_use": "id"}
    app.dependency_overrides[get_cognito_verifier] = lambda: mock
    return mock


def test_transcribes_audio(client, session, verifier):
    session.on("POST", TRANSCRIPTION_URL, FakeResponse(200, {"text": "Schedule a call"}))

    response = client.post(VOICE, json={"audio": AUDIO}, headers={"Authorization": "Bearer id-token"})

    assert response.json() == {"text": "Schedule a call"}
    verifier.verify.assert_called_once_with("id-token", require_email=True)
    _, _, kwargs = session.calls_to("POST", TRANSCRIPTION_URL)[0]
    assert kwargs["files"]["file"][0] == "audio.webm"
    assert kwargs["files"]["file"][1].startswith(b"\x1aE\xdf\xa3")
    assert kwargs["data"] == {"model": "whisper-1"}
    assert kwargs["headers"]["Authorization"] == "Bearer openai-key"


def test_requires_bearer_token(client, verifier):
    response = client.post(VOICE, json={"audio": AUDIO})
    assert response.status_code == 401
    assert response.json() == {"error": "Missing authorization"}


def test_rejects_unverified_token(client, verifier):
    verifier.verify.side_effect = TokenVerificationError("Invalid issuer")
    response = client.post(VOICE, json={"audio": AUDIO}, headers={"Authorization": "Bearer bad"})
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized: Invalid issuer"}


def test_input_errors(client, config, verifier):
    headers = {"Authorization": "Bearer id-token"}
    assert client.post(VOICE, json={}, headers=headers).json() == {"error": "No audio data provided"}
    response = client.post(VOICE, json={"audio": "***"}, headers=headers)
    assert response.status_code == 400

    config.OPENAI_API_KEY = ""
    response = client.post(VOICE, json={"audio": AUDIO}, headers=headers)
    assert response.json() == {"error": "Transcription API key not configured"}


def test_upstream_failure(client, session, verifier):
    session.on("POST", TRANSCRIPTION_URL, FakeResponse(500, text="model overloaded"))
    response = client.post(VOICE, json={"audio": AUDIO}, headers={"Authorization": "Bearer id-token"})
    assert response.status_code == 500
    assert response.json() == {"error": "Transcription API error: model overloaded"}

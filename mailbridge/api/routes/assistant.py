"""AI drafting and voice transcription endpoints."""

import logging
from typing import Optional

import requests
from fastapi import APIRouter, Depends, Header

from mailbridge.api.deps import (
    bearer_token,
    get_app_config,
    get_cognito_verifier,
    get_drafter,
    get_http_session,
    get_store,
    require_user,
)
from mailbridge.api.errors import ApiError
from mailbridge.api.models import DraftEmailRequest, VoiceToTextRequest
from mailbridge.auth.jwt_service import CognitoTokenVerifier, TokenVerificationError
from mailbridge.config import Config
from mailbridge.engine.drafter import PROFILE_COLUMNS, EmailDrafter
from mailbridge.infrastructure.supabase_store import StoreError, SupabaseStore
from mailbridge.services.transcriber import VoiceTranscriber

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["assistant"])


def get_transcriber(config: Config = Depends(get_app_config),
                    session: requests.Session = Depends(get_http_session)) -> VoiceTranscriber:
    return VoiceTranscriber(config, session=session)


def require_cognito_claims(authorization: Optional[str] = Header(default=None),
                           verifier: CognitoTokenVerifier = Depends(get_cognito_verifier)):
    """Claims of the caller's Cognito ID token (Authorization: Bearer <id_token>)."""
    token = bearer_token(authorization)
    if not token:
        raise ApiError("Missing authorization", 401)
    try:
        return verifier.verify(token, require_email=True)
    except TokenVerificationError as e:
        logger.error(f"[VOICE] Cognito JWT verification failed: {e.message}")
        raise ApiError(f"Unauthorized: {e.message}", 401)


@router.post("/draft-email")
async def draft_email(body: DraftEmailRequest,
                      user=Depends(require_user),
                      store: SupabaseStore = Depends(get_store),
                      drafter: EmailDrafter = Depends(get_drafter)):
    try:
        profile = store.get_profile(user.id, PROFILE_COLUMNS)
    except StoreError:
        profile = None
    return await drafter.draft_async(body.model_dump(), profile, getattr(user, "email", None))


@router.post("/voice-to-text")
def voice_to_text(body: VoiceToTextRequest,
                  claims=Depends(require_cognito_claims),
                  transcriber: VoiceTranscriber = Depends(get_transcriber)):
    logger.info(f"[VOICE] Authenticated Cognito user: {claims.get('sub')}")
    return transcriber.transcribe(body.audio)

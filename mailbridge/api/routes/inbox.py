"""AI inbox processing endpoint (user-triggered and scheduled)."""

from typing import Optional

import requests
from fastapi import APIRouter, Body, Depends, Header

from mailbridge.api.deps import (
    get_app_config,
    get_drafter,
    get_http_session,
    get_security,
    get_store,
    require_cron_secret,
    require_user,
)
from mailbridge.api.models import ProcessEmailsRequest
from mailbridge.config import Config
from mailbridge.engine.drafter import EmailDrafter
from mailbridge.infrastructure.supabase_store import SupabaseStore
from mailbridge.security.security_manager import SecurityManager
from mailbridge.services.email_processor import AIEmailProcessor

router = APIRouter(prefix="/functions/v1", tags=["inbox"])


@router.post("/process-ai-emails")
def process_ai_emails(body: Optional[ProcessEmailsRequest] = Body(default=None),
                      authorization: Optional[str] = Header(default=None),
                      config: Config = Depends(get_app_config),
                      store: SupabaseStore = Depends(get_store),
                      security: Optional[SecurityManager] = Depends(get_security),
                      session: requests.Session = Depends(get_http_session),
                      drafter: EmailDrafter = Depends(get_drafter)):
    """
    Without a body, or with {"cron": true}, every user is processed and the
    caller must present the cron secret. Otherwise only the signed-in caller.
    """
    category_id = body.category_id if body else None

    if body is None or body.cron:
        require_cron_secret(authorization, config)
        processor = AIEmailProcessor(config, store, security, drafter, session=session)
        return processor.process_all(category_id)

    user = require_user(authorization, store)
    processor = AIEmailProcessor(config, store, security, drafter, session=session)
    return processor.process_caller(user.id, category_id)

"""
Mailbox connect endpoints: oauth-init, oauth-callback, oauth-exchange and
connection management.
"""

import logging
from typing import Optional

import requests
from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse

from mailbridge.api.deps import (
    get_app_config,
    get_http_session,
    get_security,
    get_store,
    require_user,
)
from mailbridge.api.errors import ApiError
from mailbridge.api.models import DisconnectRequest, OAuthExchangeRequest, OAuthInitRequest
from mailbridge.config import Config
from mailbridge.infrastructure.supabase_store import SupabaseStore
from mailbridge.security.security_manager import SecurityManager
from mailbridge.services.connections import ConnectionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["oauth"])


def get_connection_service(config: Config = Depends(get_app_config),
                           store: SupabaseStore = Depends(get_store),
                           security: Optional[SecurityManager] = Depends(get_security),
                           session: requests.Session = Depends(get_http_session)) -> ConnectionService:
    return ConnectionService(config, store, security, session=session)


@router.post("/oauth-init")
def oauth_init(body: OAuthInitRequest,
               user=Depends(require_user),
               service: ConnectionService = Depends(get_connection_service)):
    if body.userId and body.userId != user.id:
        logger.warning(f"[OAUTH] Init for user={body.userId} refused for caller={user.id}")
        raise ApiError("Forbidden", 403)
    return service.init(
        body.provider,
        body.userId,
        body.organizationId,
        redirect_url=body.redirectUrl,
        app_origin=body.appOrigin,
        flow=body.flow,
    )


@router.get("/oauth-callback")
def oauth_callback(code: Optional[str] = Query(None),
                   state: Optional[str] = Query(None),
                   error: Optional[str] = Query(None),
                   error_description: Optional[str] = Query(None),
                   service: ConnectionService = Depends(get_connection_service)):
    location = service.complete_callback(code, state, error, error_description)
    return RedirectResponse(url=location, status_code=302)


@router.post("/oauth-exchange")
def oauth_exchange(body: OAuthExchangeRequest,
                   service: ConnectionService = Depends(get_connection_service)):
    return service.exchange(body.code, body.state)


@router.get("/connections")
def list_connections(user=Depends(require_user),
                     service: ConnectionService = Depends(get_connection_service)):
    return service.list_connections(user.id)


@router.post("/connections/disconnect")
def disconnect(body: DisconnectRequest,
               user=Depends(require_user),
               service: ConnectionService = Depends(get_connection_service)):
    return service.disconnect(user.id, body.provider)

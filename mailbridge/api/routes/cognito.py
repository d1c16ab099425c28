"""Cognito hosted-UI login and the Cognito -> Supabase session bridge."""

import requests
from fastapi import APIRouter, Depends

from mailbridge.api.deps import get_app_config, get_cognito_verifier, get_http_session, get_store
from mailbridge.api.models import CognitoAuthorizeRequest, CognitoBridgeRequest, CognitoTokenRequest
from mailbridge.auth.cognito import CognitoClient
from mailbridge.auth.jwt_service import CognitoTokenVerifier
from mailbridge.config import Config
from mailbridge.infrastructure.supabase_store import SupabaseStore
from mailbridge.services.cognito_bridge import CognitoUserBridge

router = APIRouter(prefix="/functions/v1", tags=["cognito"])


def get_cognito_client(config: Config = Depends(get_app_config),
                       session: requests.Session = Depends(get_http_session)) -> CognitoClient:
    return CognitoClient(config, session=session)


def get_user_bridge(config: Config = Depends(get_app_config),
                    store: SupabaseStore = Depends(get_store),
                    verifier: CognitoTokenVerifier = Depends(get_cognito_verifier)) -> CognitoUserBridge:
    return CognitoUserBridge(config, store, verifier=verifier)


@router.post("/cognito/authorize")
def cognito_authorize(body: CognitoAuthorizeRequest,
                      client: CognitoClient = Depends(get_cognito_client)):
    return client.authorize(body.identityProvider)


@router.post("/cognito/token")
def cognito_token(body: CognitoTokenRequest,
                  client: CognitoClient = Depends(get_cognito_client)):
    return client.exchange_code(body.code, body.codeVerifier)


@router.get("/cognito/logout-url")
def cognito_logout_url(client: CognitoClient = Depends(get_cognito_client)):
    return {"logoutUrl": client.logout_url()}


@router.post("/cognito-user-bridge")
def cognito_user_bridge(body: CognitoBridgeRequest,
                        bridge: CognitoUserBridge = Depends(get_user_bridge)):
    return bridge.bridge(body.id_token)

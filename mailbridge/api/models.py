from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class OAuthInitRequest(BaseModel):
    provider: Optional[str] = None
    userId: Optional[str] = None
    organizationId: Optional[str] = None
    redirectUrl: Optional[str] = None
    appOrigin: Optional[str] = None
    flow: Optional[str] = None


class OAuthExchangeRequest(BaseModel):
    code: Optional[str] = None
    state: Optional[str] = None


class DisconnectRequest(BaseModel):
    provider: Optional[str] = None


class CognitoAuthorizeRequest(BaseModel):
    identityProvider: Optional[str] = None


class CognitoTokenRequest(BaseModel):
    code: Optional[str] = None
    codeVerifier: Optional[str] = None


class CognitoBridgeRequest(BaseModel):
    id_token: Optional[str] = None


class DraftEmailRequest(BaseModel):
    categoryName: Optional[str] = None
    writingStyle: Optional[str] = None
    formatStyle: Optional[str] = None
    exampleReply: Optional[str] = None
    additionalContext: Optional[str] = None


class VoiceToTextRequest(BaseModel):
    audio: Optional[str] = None


class SyncRulesRequest(BaseModel):
    rule_id: Optional[str] = None


class CalendarEventRequest(BaseModel):
    userId: Optional[str] = None
    organizationId: Optional[str] = None
    connectionId: Optional[str] = None
    categoryId: Optional[str] = None
    categoryName: Optional[str] = None
    eventTitle: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)


class AdminActionRequest(BaseModel):
    """Action-specific fields (target_user_id, organization_id...) pass through."""
    model_config = ConfigDict(extra="allow")

    action: Optional[str] = None


class AssignPlanRequest(BaseModel):
    target_user_id: Optional[str] = None
    plan: Optional[str] = None


class ProcessEmailsRequest(BaseModel):
    category_id: Optional[str] = None
    cron: Optional[bool] = None

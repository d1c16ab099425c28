"""Label/rule sync, sync jobs and calendar activity endpoints."""

from typing import Optional

import requests
from fastapi import APIRouter, Body, Depends

from mailbridge.api.deps import get_app_config, get_http_session, get_security, get_store, require_user
from mailbridge.api.models import CalendarEventRequest, SyncRulesRequest
from mailbridge.config import Config
from mailbridge.infrastructure.supabase_store import SupabaseStore
from mailbridge.security.security_manager import SecurityManager
from mailbridge.services.jobs import SyncJobService, log_calendar_event
from mailbridge.services.sync import CategorySyncService, RuleSyncService

router = APIRouter(prefix="/functions/v1", tags=["sync"])


class SyncDependencies:
    def __init__(self, config: Config = Depends(get_app_config),
                 store: SupabaseStore = Depends(get_store),
                 security: Optional[SecurityManager] = Depends(get_security),
                 session: requests.Session = Depends(get_http_session)):
        self.config = config
        self.store = store
        self.security = security
        self.session = session

    def build(self, service_class):
        return service_class(self.config, self.store, self.security, session=self.session)


@router.post("/sync-categories")
def sync_categories(user=Depends(require_user), deps: SyncDependencies = Depends()):
    return deps.build(CategorySyncService).sync(user.id)


@router.post("/sync-rules")
def sync_rules(body: Optional[SyncRulesRequest] = Body(default=None),
               user=Depends(require_user), deps: SyncDependencies = Depends()):
    rule_id = body.rule_id if body else None
    return deps.build(RuleSyncService).sync(user.id, rule_id)


@router.post("/process-sync-job")
def process_sync_job(user=Depends(require_user), deps: SyncDependencies = Depends()):
    return deps.build(SyncJobService).process(user.id)


@router.post("/log-calendar-event")
def log_calendar(body: CalendarEventRequest,
                 user=Depends(require_user),
                 store: SupabaseStore = Depends(get_store)):
    return log_calendar_event(store, user.id, body.model_dump())

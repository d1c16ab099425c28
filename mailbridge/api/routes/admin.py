"""Super-admin endpoints."""

from fastapi import APIRouter, Depends

from mailbridge.api.deps import get_app_config, get_store, require_super_admin
from mailbridge.api.models import AdminActionRequest, AssignPlanRequest
from mailbridge.config import Config
from mailbridge.infrastructure.supabase_store import SupabaseStore
from mailbridge.services.admin import AdminService
from mailbridge.services.billing import PlanAssignmentService

router = APIRouter(prefix="/functions/v1", tags=["admin"])


@router.post("/admin-manage-users")
def admin_manage_users(body: AdminActionRequest,
                       caller=Depends(require_super_admin),
                       store: SupabaseStore = Depends(get_store)):
    return AdminService(store, caller.id).handle(body.model_dump())


@router.post("/admin-assign-stripe-plan")
def admin_assign_stripe_plan(body: AssignPlanRequest,
                             caller=Depends(require_super_admin),
                             config: Config = Depends(get_app_config),
                             store: SupabaseStore = Depends(get_store)):
    return PlanAssignmentService(config, store, caller.id).assign(body.target_user_id, body.plan)

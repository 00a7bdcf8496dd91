from typing import Optional

from fastapi import APIRouter, Depends, Query

from homeserve.auth import require_actor
from homeserve.models import (
    Actor,
    ProviderStatusUpdateRequest,
    ProviderSummary,
    ProviderVerificationView,
    VerificationReviewRequest,
    VerificationStatus,
)
from homeserve.routers.http_errors import raise_workflow_http_error
from homeserve.services.errors import WorkflowError
from homeserve.services.notification_store import notification_store
from homeserve.services.verification_workflow import verification_workflow

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/providers", response_model=list[ProviderSummary])
def list_providers(
    status: Optional[VerificationStatus] = Query(default=None),
    actor: Actor = Depends(require_actor),
):
    try:
        return verification_workflow.list_providers(actor, status=status)
    except WorkflowError as exc:
        raise_workflow_http_error(exc)


@router.get("/providers/{provider_id}", response_model=ProviderVerificationView)
def get_provider(provider_id: str, actor: Actor = Depends(require_actor)):
    try:
        return verification_workflow.get_status(actor, provider_id)
    except WorkflowError as exc:
        raise_workflow_http_error(exc)


@router.post("/providers/{provider_id}/review", response_model=ProviderVerificationView)
def review_provider(
    provider_id: str,
    request: VerificationReviewRequest,
    actor: Actor = Depends(require_actor),
):
    try:
        view = verification_workflow.review(
            actor,
            provider_id,
            approved=request.approved,
            notes=request.notes,
            document_review=request.document_review,
        )
    except WorkflowError as exc:
        raise_workflow_http_error(exc)
    if request.approved:
        title, body = "Verification approved", "You can now list services and accept bookings."
    else:
        title, body = "Verification rejected", f"Reason: {request.notes.strip()}"
    notification_store.create(
        user_id=provider_id,
        title=title,
        body=body,
        category="verification",
        deep_link="verification:status",
    )
    return view


@router.put("/providers/{provider_id}/status", response_model=ProviderVerificationView)
def set_provider_status(
    provider_id: str,
    request: ProviderStatusUpdateRequest,
    actor: Actor = Depends(require_actor),
):
    try:
        view = verification_workflow.set_provider_active(
            actor,
            provider_id,
            is_active=request.is_active,
            notes=request.notes,
        )
    except WorkflowError as exc:
        raise_workflow_http_error(exc)
    notification_store.create(
        user_id=provider_id,
        title="Account enabled" if request.is_active else "Account disabled",
        body=request.notes.strip() or "An administrator changed your account status.",
        category="account",
    )
    return view

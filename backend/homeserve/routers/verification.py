from fastapi import APIRouter, Depends, File, UploadFile

from homeserve.auth import require_actor
from homeserve.models import Actor, ProviderRegisterRequest, ProviderVerificationView
from homeserve.routers.http_errors import raise_workflow_http_error
from homeserve.services.document_bundle import DOCUMENT_TYPE_CONFIG, parse_document_type
from homeserve.services.errors import WorkflowError
from homeserve.services.notification_store import notification_store
from homeserve.services.verification_workflow import verification_workflow

router = APIRouter(prefix="/verification", tags=["verification"])


@router.post("/register", response_model=ProviderVerificationView)
def register_provider(request: ProviderRegisterRequest, actor: Actor = Depends(require_actor)):
    try:
        return verification_workflow.register_provider(actor, display_name=request.display_name)
    except WorkflowError as exc:
        raise_workflow_http_error(exc)


@router.get("/status", response_model=ProviderVerificationView)
def get_status(actor: Actor = Depends(require_actor)):
    try:
        return verification_workflow.get_status(actor, actor.user_id)
    except WorkflowError as exc:
        raise_workflow_http_error(exc)


@router.post("/documents/{doc_type}", response_model=ProviderVerificationView)
def upload_document(
    doc_type: str,
    file: UploadFile = File(...),
    actor: Actor = Depends(require_actor),
):
    try:
        # One byte past the limit is enough for the size check.
        max_size = DOCUMENT_TYPE_CONFIG[parse_document_type(doc_type)].max_size
        content = file.file.read(max_size + 1)
        return verification_workflow.add_document(
            actor,
            actor.user_id,
            doc_type,
            filename=file.filename or "upload",
            content=content,
            mime_type=file.content_type or "application/octet-stream",
        )
    except WorkflowError as exc:
        raise_workflow_http_error(exc)


@router.delete("/documents/{doc_type}/{file_id}", response_model=ProviderVerificationView)
def delete_document(doc_type: str, file_id: str, actor: Actor = Depends(require_actor)):
    try:
        return verification_workflow.delete_document(actor, actor.user_id, doc_type, file_id)
    except WorkflowError as exc:
        raise_workflow_http_error(exc)


@router.post("/submit", response_model=ProviderVerificationView)
def submit_for_review(actor: Actor = Depends(require_actor)):
    try:
        view = verification_workflow.submit_for_review(actor, actor.user_id)
    except WorkflowError as exc:
        raise_workflow_http_error(exc)
    notification_store.create(
        user_id=actor.user_id,
        title="Verification submitted",
        body="Your documents are waiting for administrator review.",
        category="verification",
        deep_link="verification:status",
    )
    return view


@router.post("/resubmit", response_model=ProviderVerificationView)
def resubmit(actor: Actor = Depends(require_actor)):
    try:
        view = verification_workflow.resubmit(actor, actor.user_id)
    except WorkflowError as exc:
        raise_workflow_http_error(exc)
    notification_store.create(
        user_id=actor.user_id,
        title="Verification resubmitted",
        body="Your updated documents are waiting for administrator review.",
        category="verification",
        deep_link="verification:status",
    )
    return view

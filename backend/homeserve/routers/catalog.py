from fastapi import APIRouter, Depends

from homeserve.auth import require_actor
from homeserve.models import Actor, CatalogService, ServiceAvailabilityRequest, ServiceCreateRequest
from homeserve.routers.http_errors import raise_workflow_http_error
from homeserve.services.errors import WorkflowError
from homeserve.services.service_catalog import service_catalog

router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.get("/services", response_model=list[CatalogService])
def list_services(actor: Actor = Depends(require_actor)):
    return service_catalog.list_services(actor.user_id)


@router.post("/services", response_model=CatalogService)
def add_service(request: ServiceCreateRequest, actor: Actor = Depends(require_actor)):
    try:
        return service_catalog.add_service(actor, request.name, is_available=request.is_available)
    except WorkflowError as exc:
        raise_workflow_http_error(exc)


@router.get("/services/{service_id}", response_model=CatalogService)
def get_service(service_id: str, actor: Actor = Depends(require_actor)):
    try:
        return service_catalog.get_service(service_id)
    except WorkflowError as exc:
        raise_workflow_http_error(exc)


@router.post("/services/{service_id}/availability", response_model=CatalogService)
def set_availability(
    service_id: str,
    request: ServiceAvailabilityRequest,
    actor: Actor = Depends(require_actor),
):
    try:
        return service_catalog.set_availability(actor, service_id, request.is_available)
    except WorkflowError as exc:
        raise_workflow_http_error(exc)

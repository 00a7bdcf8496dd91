import logging
from datetime import datetime
from typing import Callable, List
from uuid import uuid4

from homeserve.models import Actor, ActorRole, CatalogService
from homeserve.services.aggregates import utcnow
from homeserve.services.errors import (
    WorkflowNotFoundError,
    WorkflowPermissionError,
    WorkflowValidationError,
)
from homeserve.services.workflow_store import WorkflowStore, workflow_store

logger = logging.getLogger(__name__)


class ServiceCatalog:
    """Services a provider offers; bookings are always made against one of these."""

    def __init__(self, store: WorkflowStore, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    def add_service(self, actor: Actor, name: str, is_available: bool = True) -> CatalogService:
        if actor.role != ActorRole.PROVIDER:
            raise WorkflowPermissionError("Only providers can list services")
        clean_name = name.strip()
        if not clean_name:
            raise WorkflowValidationError("Service name is required")
        provider = self._store.load_provider(actor.user_id)
        if not provider.is_verified:
            raise WorkflowPermissionError("Complete provider verification before listing services")
        if not provider.is_active:
            raise WorkflowPermissionError("Your account has been disabled by an administrator")

        service = CatalogService(
            id=f"svc_{uuid4().hex[:10]}",
            provider_id=actor.user_id,
            name=clean_name,
            is_available=is_available,
            created_at=self._clock(),
        )
        self._store.insert_service(service)
        logger.info("Provider %s listed service %s", actor.user_id, service.id)
        return service

    def set_availability(self, actor: Actor, service_id: str, is_available: bool) -> CatalogService:
        service = self._store.get_service(service_id)
        if service is None:
            raise WorkflowNotFoundError("Service not found")
        if actor.role != ActorRole.PROVIDER or service.provider_id != actor.user_id:
            raise WorkflowPermissionError("Only the owning provider can change service availability")
        return self._store.update_service_availability(service_id, is_available)

    def get_service(self, service_id: str) -> CatalogService:
        service = self._store.get_service(service_id)
        if service is None:
            raise WorkflowNotFoundError("Service not found")
        return service

    def list_services(self, provider_id: str) -> List[CatalogService]:
        return self._store.list_services(provider_id)


service_catalog = ServiceCatalog(store=workflow_store)

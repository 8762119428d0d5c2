from __future__ import annotations

from fastapi import APIRouter, Depends

from research_engine.agents.orchestrator import ResearchOrchestrator, get_orchestrator
from research_engine.models.research import ResearchRequest, ResultEnvelope
from research_engine.services import logger as log_service
from research_engine.services.collection_registry import CollectionRegistry, get_registry

router = APIRouter(prefix="/api", tags=["research"])


@router.post("/research", response_model=ResultEnvelope)
async def run_research(
    request: ResearchRequest,
    orchestrator: ResearchOrchestrator = Depends(get_orchestrator),
) -> ResultEnvelope:
    """Run one research request and return the full result envelope."""
    log_service.log_event(
        event_type="research_requested",
        message="Research requested via API",
        mode=request.mode.value,
        tenant=bool(request.tenant_id),
    )
    return await orchestrator.run_research(
        request.query,
        request.mode,
        request.options,
        tenant_id=request.tenant_id,
    )


@router.get("/collections")
async def list_collections(registry: CollectionRegistry = Depends(get_registry)):
    """List system collections and the plain collections a caller may reference."""
    return {
        "system_collections": [
            {
                "id": system.id,
                "name": system.name,
                "description": system.description,
                "collection": system.collection,
                "filterable_fields": list(system.filterable_fields),
            }
            for system in registry.system_collections.values()
        ],
        "collections": [
            {
                "name": profile.name,
                "tenant_scoped": profile.tenant_field is not None,
                "filterable_fields": list(registry.filterable_fields(profile.name)),
            }
            for profile in registry.collections.values()
            if profile.name not in registry.system_collection_names()
        ],
        "default_collection_ids": list(registry.default_collection_ids),
    }

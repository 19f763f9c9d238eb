"""Operational endpoints: cache administration and diagnostics."""

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends

from backend.routes.tickets import get_services
from ticketforge.services import Services

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/cache/stats")
async def cache_stats(services: Services = Depends(get_services)):
    return {"success": True, "stats": asdict(services.cache.stats())}


@router.delete("/cache")
async def clear_cache(services: Services = Depends(get_services)):
    """Drop every cached ticket (all scopes)."""
    services.cache.clear()
    logger.info("Ticket cache cleared")
    return {"success": True, "message": "Cache limpo com sucesso"}


@router.get("/diagnostics")
async def diagnostics(services: Services = Depends(get_services)):
    """Provider, key presence (never the key), job store, worker pool and cache state."""
    return {"success": True, "diagnostics": services.diagnostics()}

"""
Loader discovery endpoint
"""

from fastapi import APIRouter, Query
from connectors.loaders.registry import get_available_data_loader_infos
from schemas.loader import LoaderInfo
from typing import List

router = APIRouter(tags=["Loaders"])


@router.get("/loaders", response_model=List[LoaderInfo])
async def list_loaders(include_hidden: bool = Query(False, description="Include loaders that need code-level hooks")):
    """Registered loader types with an example config each"""
    return get_available_data_loader_infos(include_hidden=include_hidden)

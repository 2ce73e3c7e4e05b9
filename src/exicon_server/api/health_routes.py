from typing import Annotated, Optional

from fastapi import APIRouter, Depends

from .dependencies import get_search_index
from .models import HealthResponse
from ..search.index import SearchIndex

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def health(
    index: Annotated[Optional[SearchIndex], Depends(get_search_index)],
) -> HealthResponse:
    available = index is not None and index.is_available()
    return HealthResponse(
        status="ok",
        search_index="available" if available else "fallback",
        indexed_documents=index.doc_count() if available else 0,
    )

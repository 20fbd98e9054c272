from fastapi import APIRouter, Depends, HTTPException, Request

from server.dependencies.auth import get_owner_id, verify_api_key
from server.models.requests import QueryRequest
from server.models.responses import QueryResponse
from shared.errors import TransientClientError

router = APIRouter(prefix="/query", tags=["query"])


@router.post("")
async def query_documents(
    request: Request,
    body: QueryRequest,
    owner_id: str = Depends(get_owner_id),
    _: None = Depends(verify_api_key),
) -> QueryResponse:
    """Execute a semantic search over the caller's documents.

    Args:
        request (Request): FastAPI request (provides app.state.retrieval_service).
        body (QueryRequest): JSON body with query string and optional limit.
        owner_id (str): The calling user, taken from X-User-Id.
        _ (None): Auth dependency result (unused).

    Returns:
        QueryResponse: Matching chunks ordered by descending score.
    """
    retrieval_service = request.app.state.retrieval_service
    try:
        results = await retrieval_service.do_retrieve(body.query, owner_id=owner_id, limit=body.limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TransientClientError:
        raise HTTPException(status_code=503, detail="Search backend unavailable, try again later")
    return QueryResponse(query=body.query, results=results, total=len(results))

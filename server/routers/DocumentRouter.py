from fastapi import APIRouter, Depends, HTTPException, Request

from server.dependencies.auth import get_owner_id, verify_api_key
from server.models.responses import DeleteResponse, UploadResponse
from services.documents.DocumentService import DocumentNotFoundError
from shared.errors import UploadValidationError
from shared.models.document import DocumentMetadata, DocumentStatus, IngestionJob, KnowledgeDocument

router = APIRouter(prefix="/documents", tags=["documents"], dependencies=[Depends(verify_api_key)])


async def _read_body(request: Request, max_bytes: int) -> bytes:
    """Read the raw request body, aborting as soon as it exceeds max_bytes."""
    received = bytearray()
    async for part in request.stream():
        received.extend(part)
        if len(received) > max_bytes:
            raise UploadValidationError(f"File too large (max {max_bytes // (1024 * 1024)}MB).")
    return bytes(received)


@router.post("/upload")
async def upload_document(
    request: Request,
    filename: str | None = None,
    type: str | None = None,
    owner_id: str = Depends(get_owner_id),
) -> UploadResponse:
    """Accept a raw file upload and schedule its ingestion.

    The response is sent as soon as the document row exists; extraction,
    embedding and indexing run in the background. Poll GET /documents/{id}
    for the final status.

    Args:
        request (Request): FastAPI request, its body is the file content.
        filename (str | None): Original filename (query parameter).
        type (str | None): Declared content type (query parameter), guessed from filename if absent.
        owner_id (str): The calling user.

    Returns:
        UploadResponse: The new document id with status "processing".
    """
    policy = request.app.state.upload_policy
    try:
        clean_name = policy.clean_filename(filename)
        content_type = policy.resolve_content_type(clean_name, type)
        data = await _read_body(request, policy.max_upload_bytes)
        policy.check_size(len(data))
    except UploadValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    repository = request.app.state.repository
    document = await repository.do_insert_document(
        owner_id=owner_id,
        title=clean_name,
        metadata=DocumentMetadata(size=len(data), content_type=content_type),
    )
    request.app.state.logging.info(
        "Upload accepted: document %s ('%s', %d bytes) for owner %s.",
        document.id, clean_name, len(data), owner_id,
    )

    request.app.state.ingestion_executor.submit(
        IngestionJob(
            document_id=document.id,
            owner_id=owner_id,
            filename=clean_name,
            content_type=content_type,
            data=data,
        )
    )
    return UploadResponse(id=document.id, status=DocumentStatus.PROCESSING)


@router.get("")
async def list_documents(request: Request, owner_id: str = Depends(get_owner_id)) -> list[KnowledgeDocument]:
    """List the caller's documents with their current status, newest first."""
    return await request.app.state.document_service.do_list(owner_id)


@router.get("/{document_id}")
async def get_document(request: Request, document_id: str, owner_id: str = Depends(get_owner_id)) -> KnowledgeDocument:
    try:
        return await request.app.state.document_service.do_get(owner_id, document_id)
    except DocumentNotFoundError:
        raise HTTPException(status_code=404, detail="Not found")


@router.delete("")
async def delete_document(request: Request, id: str | None = None, owner_id: str = Depends(get_owner_id)) -> DeleteResponse:
    """Delete a document from the vector index, the blob store and the database.

    Args:
        request (Request): FastAPI request (provides app.state.document_service).
        id (str | None): The document id (query parameter).
        owner_id (str): The calling user.

    Returns:
        DeleteResponse: {"success": true} once the document row is gone.
    """
    if not id:
        raise HTTPException(status_code=400, detail="Missing id")
    try:
        await request.app.state.document_service.do_delete_document(owner_id, id)
    except DocumentNotFoundError:
        raise HTTPException(status_code=404, detail="Not found")
    return DeleteResponse(success=True)

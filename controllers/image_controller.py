from fastapi import Request, UploadFile, HTTPException
from fastapi.responses import JSONResponse, Response
from typing import Any, Dict, List, Optional

from controllers.ingestion_controller import ImageIngestor
from controllers.retrieval_controller import ImageResolver
from dal.image_dal import ImageDAL
from models.ingestion_models import BatchIngestResult, IngestFailure, IngestOptions
from services.thumbnail_generator import ThumbnailGenerator
from utils.exceptions import GatewayError, NotFoundError, ValidationError
from utils.media_validation import parse_bool_field, read_upload
from utils.settings import READ_MODES


def _image_dal(request: Request) -> ImageDAL:
    return request.app.state.image_dal


def build_ingestor(request: Request) -> ImageIngestor:
    state = request.app.state
    return ImageIngestor(
        state.image_dal,
        state.gateway,
        state.task_runner,
        base_url=state.settings.public_base_url,
        thumbnails=ThumbnailGenerator(),
    )


def build_resolver(request: Request) -> ImageResolver:
    state = request.app.state
    return ImageResolver(state.image_dal, state.gateway, state.task_runner)


async def upload_images(
    request: Request,
    files: List[UploadFile],
    tags: Optional[str] = None,
    description: Optional[str] = None,
    is_public: Optional[str] = None,
) -> JSONResponse:
    """Handle a (possibly multi-file) upload.

    Args:
        request: FastAPI Request object (used to access app.state for shared clients).
        files: Uploaded files from the `file` form field.
        tags: Optional tags applied to every file.
        description: Optional description applied to every file.
        is_public: Optional `isPublic` form value; defaults to public.

    Returns:
        JSONResponse with `success`, `urls`, `images`, `message` and `failed`.
        Partial success is a 200; zero successes is a 400 when every file was
        invalid, 500 when the gateway is misconfigured and 502 otherwise.
    """
    if not files:
        raise HTTPException(status_code=400, detail="No file provided")

    options = IngestOptions(
        tags=tags.strip() if tags else None,
        description=description.strip() if description else None,
        is_public=parse_bool_field(is_public),
    )
    ingestor = build_ingestor(request)
    batch = BatchIngestResult()
    # One part in memory at a time
    for upload in files:
        try:
            incoming = await read_upload(upload)
        except ValidationError as exc:
            batch.failed.append(IngestFailure.from_error(upload.filename or "image", exc))
            continue
        await ingestor.ingest_into(batch, incoming, options)

    failed = [failure.to_api() for failure in batch.failed]
    if not batch.ok:
        statuses = {failure.error_type for failure in batch.failed}
        if statuses == {ValidationError.__name__}:
            status_code = ValidationError.status_code
        elif GatewayError.__name__ in statuses:
            status_code = GatewayError.status_code
        else:
            status_code = 502
        message = batch.failed[0].message if len(batch.failed) == 1 else f"Upload failed: {batch.summary}"
        return JSONResponse(status_code=status_code, content={"success": False, "message": message, "failed": failed})

    return JSONResponse(
        {
            "success": True,
            "message": batch.summary,
            "urls": [image.url for image in batch.succeeded],
            "images": [image.to_api() for image in batch.succeeded],
            "failed": failed,
        }
    )


async def read_image(request: Request, file_id: str, fmt: Optional[str] = None) -> Response:
    """Serve the bytes behind a local reference in the negotiated mode."""
    if fmt:
        mode = fmt.strip().lower()
        if mode not in READ_MODES:
            raise HTTPException(status_code=400, detail=f"format must be one of {', '.join(READ_MODES)}")
    elif "application/json" in request.headers.get("accept", ""):
        mode = "json"
    else:
        mode = request.app.state.settings.read_mode
    return await build_resolver(request).read(file_id, mode)


async def list_images(
    request: Request,
    page: int = 1,
    limit: int = 20,
    query: Optional[str] = None,
    include_all: bool = False,
    include_deleted: bool = False,
    include_stats: bool = False,
) -> Dict[str, Any]:
    """List, search and optionally summarize stored images."""
    if page < 1 or limit < 1:
        raise HTTPException(status_code=400, detail="Invalid page or limit parameters")

    image_dal = _image_dal(request)
    if query:
        images = await image_dal.search(query, page, limit, public_only=not include_all)
    elif include_all:
        images = await image_dal.list_all(page, limit, include_deleted=include_deleted)
    else:
        images = await image_dal.list_public(page, limit)

    response: Dict[str, Any] = {
        "success": True,
        "images": [image.to_api() for image in images],
        "pagination": {"page": page, "limit": limit, "hasMore": len(images) == limit},
    }
    if include_stats:
        response["stats"] = (await image_dal.stats()).to_api()
    return response


async def get_image(request: Request, image_id: int) -> Dict[str, Any]:
    record = await _image_dal(request).get_by_id(int(image_id))
    if record is None:
        raise HTTPException(status_code=404, detail="Image not found")
    return {"success": True, "image": record.to_api()}


async def update_image(request: Request, image_id: int, updates: Dict[str, Any]) -> Dict[str, Any]:
    """Apply partial metadata updates and return the refreshed record.

    The store accepts updates for unknown ids; the API answers 404 when no
    live record exists afterwards.
    """
    image_dal = _image_dal(request)
    await image_dal.update(int(image_id), updates)
    record = await image_dal.get_by_id(int(image_id))
    if record is None:
        raise HTTPException(status_code=404, detail="Image not found")
    return {"success": True, "image": record.to_api(), "message": "Image updated successfully"}


async def delete_image(request: Request, image_id: int) -> Dict[str, Any]:
    try:
        await _image_dal(request).soft_delete(int(image_id))
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    return {"success": True, "message": "Image deleted successfully"}


async def get_thumbnail(request: Request, image_id: int) -> Response:
    """Controller to fetch the preview thumbnail bytes for a stored image.

    Raises:
        HTTPException(404) if the image or thumbnail is not found.
    """
    thumbnail = await _image_dal(request).get_thumbnail(int(image_id))
    if not thumbnail:
        raise HTTPException(status_code=404, detail="Thumbnail not available for this image")

    # Stored thumbnails are raw PNG bytes; return them directly
    return Response(content=thumbnail, media_type="image/png")

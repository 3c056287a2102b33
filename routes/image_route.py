"""FastAPI routes for image upload, retrieval and administration."""

from typing import List, Optional

from fastapi import APIRouter, File, Form, HTTPException, Query, Request, UploadFile
from pydantic import BaseModel, Field

from controllers.image_controller import (
	delete_image,
	get_image,
	get_thumbnail,
	list_images,
	read_image,
	update_image,
	upload_images,
)
from utils.exceptions import ImageHostError

router = APIRouter(prefix="/images", tags=["images"])


class UpdatePayload(BaseModel):
	name: Optional[str] = None
	tags: Optional[str] = None
	description: Optional[str] = None
	is_public: Optional[bool] = Field(default=None, alias="isPublic")

	model_config = {"populate_by_name": True}


@router.post("")
async def upload_route(
	request: Request,
	file: List[UploadFile] = File(...),
	tags: Optional[str] = Form(None),
	description: Optional[str] = Form(None),
	is_public: Optional[str] = Form(None, alias="isPublic"),
):
	"""Upload one or more images to remote storage and record them."""
	try:
		return await upload_images(request, file, tags, description, is_public)
	except (HTTPException, ImageHostError):
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/read/{file_id}")
async def read_route(request: Request, file_id: str, fmt: Optional[str] = Query(None, alias="format")):
	"""Return the stored bytes, a base64 JSON envelope or a redirect."""
	try:
		return await read_image(request, file_id, fmt)
	except (HTTPException, ImageHostError):
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("")
async def list_route(
	request: Request,
	query: Optional[str] = Query(None),
	search: Optional[str] = Query(None),
	page: int = Query(1),
	limit: int = Query(20),
	all: bool = Query(False),
	deleted: bool = Query(False),
	stats: bool = Query(False),
):
	"""List public images, all images (`all=true`) or search results."""
	try:
		return await list_images(request, page, limit, query or search, all, deleted, stats)
	except (HTTPException, ImageHostError):
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/{image_id}")
async def get_route(request: Request, image_id: int):
	try:
		return await get_image(request, image_id)
	except (HTTPException, ImageHostError):
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.put("/{image_id}")
async def update_route(request: Request, image_id: int, payload: UpdatePayload):
	try:
		return await update_image(request, image_id, payload.model_dump(exclude_none=True))
	except (HTTPException, ImageHostError):
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.delete("/{image_id}")
async def delete_route(request: Request, image_id: int):
	try:
		return await delete_image(request, image_id)
	except (HTTPException, ImageHostError):
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/{image_id}/thumbnail")
async def get_image_thumbnail(request: Request, image_id: int):
	"""Return the PNG preview bytes for the specified image id."""
	try:
		return await get_thumbnail(request, image_id)
	except (HTTPException, ImageHostError):
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))

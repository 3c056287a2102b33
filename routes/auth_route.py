"""FastAPI routes for the gallery administrator login."""

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from controllers.auth_controller import login

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginPayload(BaseModel):
	username: str = ""
	password: str = ""


@router.post("/login")
async def login_route(request: Request, payload: LoginPayload):
	try:
		return await login(request, payload.username, payload.password)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))

# tabcast_api/routes/session_routes.py
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from typing import Optional, List
from ..deps import get_session_manager
from tabcast.errors import LaunchError, PortConflictError, TabcastError
from tabcast.discovery import discover_browsers
from tabcast.profile import LaunchOptions, WindowSize
from tabcast.tabs import list_pages

router = APIRouter()

class CreateSessionRequest(BaseModel):
    headless: Optional[bool] = None
    width: Optional[int] = Field(default=None, gt=0)
    height: Optional[int] = Field(default=None, gt=0)
    locale: Optional[str] = None
    timezone: Optional[str] = None
    # 0 or omitted: the session lives until deleted
    duration_sec: Optional[float] = Field(default=None, ge=0)
    extra_args: Optional[List[str]] = None
    port: Optional[int] = Field(default=None, gt=0, lt=65536)

    def to_options(self) -> LaunchOptions:
        fields = self.model_dump(exclude_none=True, exclude={"width", "height"})
        window = WindowSize()
        if self.width:
            window.width = self.width
        if self.height:
            window.height = self.height
        return LaunchOptions(window=window, **fields)

@router.post("/sessions", status_code=201)
async def create_session(req: CreateSessionRequest, sm = Depends(get_session_manager)):
    try:
        session = await sm.create(req.to_options())
    except PortConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except LaunchError as e:
        raise HTTPException(status_code=503, detail=f"Browser not available: {e}")
    return session.summary()

@router.get("/sessions")
def list_sessions(sm = Depends(get_session_manager)):
    return {"sessions": sm.list()}

@router.get("/sessions/{session_id}")
def get_session(session_id: str, sm = Depends(get_session_manager)):
    session = sm.get(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="session not found")
    return session.summary()

@router.get("/sessions/{session_id}/tabs")
async def get_session_tabs(session_id: str, sm = Depends(get_session_manager)):
    session = sm.get(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="session not found")
    try:
        pages = await list_pages(session.debug_endpoint)
    except TabcastError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"id": session_id, "tabs": [p.to_dict() for p in pages]}

@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str, sm = Depends(get_session_manager)):
    ok = await sm.destroy(session_id)
    if not ok:
        raise HTTPException(status_code=404, detail="session not found or already closed")
    return {"deleted": True, "id": session_id}

@router.get("/discover")
async def discover():
    found = await discover_browsers()
    return {"sessions": [b.to_dict() for b in found]}

@router.get("/health")
def health(sm = Depends(get_session_manager)):
    return {"status": "ok", "sessions": len(sm)}

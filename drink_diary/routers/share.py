from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas import ResolvedShareLinkRead
from ..services.share_links import resolve_share_link

router = APIRouter()


@router.get("/")
async def index():
    return {"ok": True, "service": "drink-diary"}


@router.get("/health")
async def health():
    return {"ok": True}


@router.get("/q/{token}", response_model=ResolvedShareLinkRead)
async def share_link_view(token: str, db: AsyncSession = Depends(get_db)):
    """Public, read-only view behind a plain or gift QR code."""
    resolved = await resolve_share_link(db, token)
    if not resolved:
        raise HTTPException(status_code=404, detail="Link not found")
    return ResolvedShareLinkRead.model_validate(resolved, from_attributes=True)

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from pagebot.dependencies import get_takeover_store
from pagebot.logging_config import get_logger
from pagebot.schemas.takeover import TakeoverRequest, TakeoverResponse, TakeoverStatusResponse

logger = get_logger("takeover")

router = APIRouter(prefix="/api", tags=["takeover"])


@router.post("/human-takeover", response_model=TakeoverResponse, response_model_exclude_none=True)
async def manual_takeover(payload: TakeoverRequest, store=Depends(get_takeover_store)):
    """Pause or resume the bot for one customer."""
    if not payload.sender_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="senderId is required")

    if payload.action == "pause":
        await store.start_or_refresh(payload.sender_id)
        timeout = await store.get_timeout_minutes()
        return TakeoverResponse(
            success=True,
            message=f"Bot paused for {payload.sender_id} for {timeout} minutes",
            action="paused",
            timeout=timeout,
        )

    if payload.action == "resume":
        await store.end(payload.sender_id)
        return TakeoverResponse(success=True, message=f"Bot resumed for {payload.sender_id}", action="resumed")

    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='action must be "pause" or "resume"')


@router.get("/human-takeover", response_model=TakeoverStatusResponse)
async def takeover_status(senderId: Optional[str] = None, store=Depends(get_takeover_store)):
    if not senderId:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="senderId is required")

    return TakeoverStatusResponse(
        senderId=senderId,
        takeoverActive=await store.is_active(senderId),
        timeoutMinutes=await store.get_timeout_minutes(),
    )

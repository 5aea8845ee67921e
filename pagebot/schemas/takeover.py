from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class TakeoverRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sender_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("senderId", "sender_id"))
    action: Optional[str] = None


class TakeoverResponse(BaseModel):
    success: bool
    message: str
    action: str
    timeout: Optional[int] = None


class TakeoverStatusResponse(BaseModel):
    senderId: str
    takeoverActive: bool
    timeoutMinutes: int

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel

from ..auth.security import get_current_user
from ..models.models import User
from ..services.assistant import RenovationAssistant, get_assistant


router = APIRouter(prefix="/api", tags=["assistant"])


class ImageEditRequest(BaseModel):
    imageUrl: str
    instructions: Optional[str] = None


@router.post("/chat-renovation")
async def chat_renovation(
    message: str = Form(""),
    image: Optional[UploadFile] = File(None),
    me: User = Depends(get_current_user),
    assistant: RenovationAssistant = Depends(get_assistant),
):
    if image is not None and image.filename:
        data = await image.read()
        advice = await asyncio.to_thread(assistant.advise, message, data, image.content_type)
    else:
        advice = await asyncio.to_thread(assistant.advise, message)
    return {"message": advice}


@router.post("/image-edit")
def image_edit(
    payload: ImageEditRequest,
    me: User = Depends(get_current_user),
    assistant: RenovationAssistant = Depends(get_assistant),
):
    return assistant.edit_image(payload.imageUrl, payload.instructions)

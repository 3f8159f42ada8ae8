"""
Models Router

Lists the chat models the assessment engine can be pointed at, flagging
the one configured for grading and authoring.
"""

from fastapi import APIRouter
from pydantic import BaseModel

from app.routers.auth import StaffUser
from app.services.llm.registry import list_models


router = APIRouter()


class ModelInfo(BaseModel):
    id: str
    display_name: str
    tier: str
    description: str
    is_default: bool


@router.get("", response_model=list[ModelInfo])
async def get_available_models(_: StaffUser):
    return list_models()

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.dependencies import get_current_user
from app.models.response import ApiResponse
from app.services.ai_suggestion_service import AISuggestionService, ai_suggestion_service

router = APIRouter()


class ListingAnalysisRequest(BaseModel):
    listing_id: Optional[str] = None


def get_ai_suggestion_service() -> AISuggestionService:
    """Dependency to get AISuggestionService"""
    return ai_suggestion_service


@router.get("/suggestions", response_model=ApiResponse)
async def get_suggestions(
    current_user: dict = Depends(get_current_user),
    service: AISuggestionService = Depends(get_ai_suggestion_service),
):
    result = await service.get_suggestions(str(current_user["_id"]))
    message = "AI suggestions generated successfully" if result["source"] == "ai" else "Fallback suggestions provided"
    return ApiResponse(data=result, message=message)


@router.post("/analyze-listing", response_model=ApiResponse)
async def analyze_listing(
    data: ListingAnalysisRequest,
    current_user: dict = Depends(get_current_user),
    service: AISuggestionService = Depends(get_ai_suggestion_service),
):
    result = await service.analyze_listing(str(current_user["_id"]), data.listing_id)
    return ApiResponse(data=result, message="Listing analysis completed")

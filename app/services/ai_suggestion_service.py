"""
AI room exchange suggestions.

This module asks the Gemini `generateContent` endpoint to rank open listings
for a user. When no API key is configured, or the call fails, a rule-based
scorer produces the suggestions instead.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from app.core.config import settings
from app.db.mongodb import mongodb
from app.exceptions import AISuggestionError, NotFoundError, ValidationError
from app.models.status_enums import GenderPreference, ListingStatus, Urgency
from app.models.user import UserSummary
from app.utils.document_utils import parse_object_id, serialize_value, utcnow

logger = logging.getLogger(__name__)

MAX_PROMPT_LISTINGS = 20
TOP_SUGGESTIONS = 5
POPULAR_INTEREST_COUNT = 5

SUGGESTIONS_PROMPT = """You are an AI assistant helping a student find the best room exchange opportunities in a hostel.
Analyze the user's current situation and preferences against available room listings.

USER PROFILE:
{user_context}

AVAILABLE ROOM LISTINGS:
{listings}

Return only a JSON object with this structure:
{{
  "suggestions": [
    {{
      "listing_id": "string",
      "title": "string",
      "compatibility_score": number (1-10),
      "reasoning": "string",
      "benefits": ["string"],
      "concerns": ["string"],
      "recommendation": "string"
    }}
  ],
  "overall_strategy": "string",
  "additional_tips": ["string"]
}}
Give at most {top} suggestions. Consider hostel, room type, floor, amenities, budget,
urgency and popularity (interest count)."""

ANALYSIS_PROMPT = """Analyze this room exchange opportunity for a student.

USER'S CURRENT SITUATION:
{user_context}

TARGET LISTING:
{listing}

Return only a JSON object:
{{
  "compatibility_percentage": number (0-100),
  "overall_assessment": "string",
  "detailed_analysis": {{
    "location_analysis": "string",
    "amenity_comparison": "string",
    "mutual_benefit": "string",
    "financial_impact": "string"
  }},
  "pros": ["string"],
  "cons": ["string"],
  "risk_assessment": "string",
  "negotiation_tips": ["string"],
  "action_plan": ["string"]
}}"""


def recommendation_for(score: float) -> str:
    if score >= 4:
        return "Highly recommended"
    if score >= 2:
        return "Worth considering"
    return "Limited compatibility"


def meets_desired_room(desired: dict, room: dict) -> bool:
    """Whether a room satisfies every non-empty preference of a listing owner"""
    desired = desired or {}
    hostels = desired.get("preferred_hostels") or []
    room_types = desired.get("preferred_room_types") or []
    floors = desired.get("preferred_floors") or []
    return (
        (not hostels or room.get("hostel_name") in hostels)
        and (not room_types or room.get("room_type") in room_types)
        and (not floors or room.get("floor") in floors)
    )


def score_listing(current_room: dict, preferences: dict, listing: dict) -> Dict[str, Any]:
    """
    Rule-based compatibility of a listing for a user.

    Returns:
        Dict with the raw score, the clamped 1..10 compatibility score,
        benefits and concerns
    """
    preferences = preferences or {}
    room = listing.get("current_room") or {}
    score = 0.0
    benefits: List[str] = []
    concerns: List[str] = []

    if room.get("hostel_name") in (preferences.get("preferred_hostels") or []):
        score += 3
        benefits.append(f"Located in preferred hostel: {room.get('hostel_name')}")
    if room.get("room_type") in (preferences.get("preferred_room_types") or []):
        score += 2
        benefits.append(f"Matches room type preference: {room.get('room_type')}")
    if room.get("floor") is not None and room.get("floor") in (preferences.get("preferred_floors") or []):
        score += 1
        benefits.append(f"Located on preferred floor: {room.get('floor')}")

    max_budget = preferences.get("max_budget")
    rent = room.get("rent")
    if max_budget and rent is not None:
        if rent <= max_budget:
            score += 1
            benefits.append(f"Within budget: {rent}")
        else:
            concerns.append(f"Above budget: {rent} > {max_budget}")

    wanted = preferences.get("amenities") or []
    matching = [amenity for amenity in room.get("amenities") or [] if amenity in wanted]
    if matching:
        score += 0.5 * len(matching)
        benefits.append(f"Matching amenities: {', '.join(matching)}")

    if listing.get("urgency") in (Urgency.URGENT.value, Urgency.HIGH.value):
        score += 0.5
        benefits.append("High urgency - quick exchange possible")

    interest_count = listing.get("interest_count", len(listing.get("interested_users", [])))
    if interest_count > POPULAR_INTEREST_COUNT:
        concerns.append("Popular listing - high competition")
    elif interest_count == 0:
        concerns.append("No other interest shown yet")

    if meets_desired_room(listing.get("desired_room"), current_room or {}):
        score += 2
        benefits.append("You meet their desired room criteria")
    else:
        score -= 1
        concerns.append("May not meet their room preferences")

    return {
        "score": score,
        "compatibility_score": min(10, max(1, round(score))),
        "benefits": benefits,
        "concerns": concerns,
    }


def extract_json(text: str) -> Optional[dict]:
    """Pull the first JSON object out of a model answer"""
    match = re.search(r"\{[\s\S]*\}", text or "")
    if not match:
        return None
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError:
        return None


class AISuggestionService:
    """Service for AI assisted room exchange suggestions"""

    def __init__(self) -> None:
        self.api_key = settings.GEMINI_API_KEY
        self.model = settings.GEMINI_MODEL
        self.base_url = settings.GEMINI_BASE_URL.rstrip("/")
        self.timeout = settings.GEMINI_TIMEOUT

    async def _get_db(self):
        """Get database instance"""
        if mongodb.client is None:
            await mongodb.connect_to_mongo()
        return mongodb.get_database()

    async def _call_gemini(self, prompt: str, max_output_tokens: int = 2048) -> str:
        """Call Gemini and return the text of the first candidate - raises AISuggestionError"""
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    f"{self.base_url}/models/{self.model}:generateContent",
                    params={"key": self.api_key},
                    json={
                        "contents": [{"parts": [{"text": prompt}]}],
                        "generationConfig": {
                            "temperature": 0.7,
                            "topK": 40,
                            "topP": 0.95,
                            "maxOutputTokens": max_output_tokens,
                        },
                    },
                    timeout=self.timeout,
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise AISuggestionError(f"Gemini request failed: {e}", original_error=e)

        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise AISuggestionError("Gemini returned no suggestions", original_error=e)

    async def _load_user(self, user_id: str) -> dict:
        db = await self._get_db()
        user = await db.users.find_one(
            {"_id": parse_object_id(user_id, "user id")},
            {"full_name": 1, "current_room": 1, "exchange_preferences": 1, "gender": 1},
        )
        if not user:
            raise NotFoundError("User not found")
        if not user.get("current_room"):
            raise ValidationError("Please update your current room details to get AI suggestions")
        return user

    async def _available_listings(self, user: dict) -> List[dict]:
        db = await self._get_db()
        cursor = db.room_listings.find(
            {
                "gender_preference": {"$in": [user.get("gender"), GenderPreference.MIXED.value]},
                "is_active": True,
                "status": {"$in": [ListingStatus.OPEN.value, ListingStatus.BIDDING.value]},
                "listed_by": {"$ne": user["_id"]},
                "available_till": {"$gte": utcnow()},
            }
        ).limit(MAX_PROMPT_LISTINGS)
        listings = [listing async for listing in cursor]

        owner_ids = list({listing["listed_by"] for listing in listings})
        owners = {}
        if owner_ids:
            async for owner in db.users.find({"_id": {"$in": owner_ids}}, {"full_name": 1, "username": 1}):
                owners[str(owner["_id"])] = UserSummary.from_db_doc(owner).model_dump()
        for listing in listings:
            listing["owner"] = owners.get(str(listing["listed_by"]))
        return listings

    @staticmethod
    def _listing_card(listing: dict) -> dict:
        return serialize_value(
            {
                "id": listing["_id"],
                "title": listing.get("title"),
                "current_room": listing.get("current_room"),
                "desired_room": listing.get("desired_room"),
                "urgency": listing.get("urgency"),
                "interest_count": listing.get("interest_count", len(listing.get("interested_users", []))),
                "listed_by": listing.get("owner"),
                "created_at": listing.get("created_at"),
            }
        )

    def fallback_suggestions(self, user_context: dict, listings: List[dict]) -> List[dict]:
        """Rank listings with the rule-based scorer and keep the best ones"""
        suggestions = []
        for listing in listings:
            result = score_listing(user_context.get("current_room"), user_context.get("preferences"), listing)
            suggestions.append(
                {
                    "listing_id": str(listing["_id"]),
                    "title": listing.get("title"),
                    "compatibility_score": result["compatibility_score"],
                    "reasoning": (
                        f"Based on {len(result['benefits'])} matching factors "
                        f"and {len(result['concerns'])} potential concerns"
                    ),
                    "benefits": result["benefits"],
                    "concerns": result["concerns"],
                    "recommendation": recommendation_for(result["score"]),
                    "listing": self._listing_card(listing),
                }
            )
        suggestions.sort(key=lambda s: s["compatibility_score"], reverse=True)
        return suggestions[:TOP_SUGGESTIONS]

    async def get_suggestions(self, user_id: str) -> dict:
        user = await self._load_user(user_id)
        listings = await self._available_listings(user)
        user_context = serialize_value(
            {
                "current_room": user.get("current_room"),
                "preferences": user.get("exchange_preferences") or {},
                "gender": user.get("gender"),
            }
        )
        result: Dict[str, Any] = {"user_context": user_context, "total_available_listings": len(listings)}

        if self.api_key and listings:
            try:
                ai_suggestions = await self._ai_suggestions(user_context, listings)
                result["ai_suggestions"] = ai_suggestions
                result["source"] = "ai"
                return result
            except AISuggestionError as e:
                logger.warning("AI suggestions unavailable for user %s: %s", user_id, e.message)

        result["suggestions"] = self.fallback_suggestions(user_context, listings)
        result["source"] = "fallback"
        result["note"] = "AI service unavailable. Showing algorithmic suggestions."
        return result

    async def _ai_suggestions(self, user_context: dict, listings: List[dict]) -> dict:
        cards = [self._listing_card(listing) for listing in listings]
        prompt = SUGGESTIONS_PROMPT.format(
            user_context=json.dumps(user_context, indent=2),
            listings=json.dumps(cards, indent=2),
            top=TOP_SUGGESTIONS,
        )
        text = await self._call_gemini(prompt)
        parsed = extract_json(text)
        if parsed is None:
            return {
                "suggestions": [],
                "overall_strategy": text[:500],
                "additional_tips": ["Please try again for more detailed suggestions"],
            }

        # Keep only suggestions that point at a listing we actually offered
        by_id = {card["id"]: card for card in cards}
        suggestions = []
        for suggestion in parsed.get("suggestions") or []:
            card = by_id.get(str(suggestion.get("listing_id")))
            if card:
                suggestions.append({**suggestion, "listing": card})
        parsed["suggestions"] = suggestions[:TOP_SUGGESTIONS]
        return parsed

    async def analyze_listing(self, user_id: str, listing_id: Optional[str]) -> dict:
        if not listing_id:
            raise ValidationError("Listing ID is required")
        user = await self._load_user(user_id)
        db = await self._get_db()
        listing = await db.room_listings.find_one({"_id": parse_object_id(listing_id, "listing id")})
        if not listing:
            raise NotFoundError("Listing not found")
        owner = await db.users.find_one({"_id": listing.get("listed_by")}, {"full_name": 1, "username": 1})
        listing["owner"] = UserSummary.from_db_doc(owner).model_dump() if owner else None

        user_context = serialize_value(
            {"current_room": user.get("current_room"), "preferences": user.get("exchange_preferences") or {}}
        )
        result = {"listing": self._listing_card(listing), "user_context": user_context}

        if self.api_key:
            try:
                prompt = ANALYSIS_PROMPT.format(
                    user_context=json.dumps(user_context, indent=2),
                    listing=json.dumps(
                        {**self._listing_card(listing), "description": listing.get("description")}, indent=2
                    ),
                )
                analysis = extract_json(await self._call_gemini(prompt, max_output_tokens=1500))
                if analysis is not None:
                    result["analysis"] = analysis
                    result["source"] = "ai"
                    return result
                logger.warning("Gemini analysis for listing %s was not valid JSON", listing_id)
            except AISuggestionError as e:
                logger.warning("AI analysis unavailable for listing %s: %s", listing_id, e.message)

        scored = score_listing(user_context["current_room"], user_context["preferences"], listing)
        result["analysis"] = {
            "compatibility_percentage": scored["compatibility_score"] * 10,
            "overall_assessment": recommendation_for(scored["score"]),
            "pros": scored["benefits"],
            "cons": scored["concerns"],
        }
        result["source"] = "fallback"
        return result


ai_suggestion_service = AISuggestionService()

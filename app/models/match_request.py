from datetime import datetime
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, Field

from app.models.status_enums import ApprovalStatus, Priority, SwapState
from app.utils.document_utils import id_str, serialize_value


class MatchRequestCreate(BaseModel):
    listing_id: Optional[str] = None
    message: Optional[str] = None
    priority: Priority = Priority.MEDIUM


class MatchRequestStatusUpdate(BaseModel):
    status: Optional[str] = None
    response_message: Optional[str] = Field(None, max_length=500)


class SwapArrangement(BaseModel):
    """Practical details of the exchange agreed while approving"""
    scheduled_date: Optional[datetime] = None
    meeting_point: Optional[str] = Field(None, max_length=200)
    additional_notes: Optional[str] = Field(None, max_length=500)


class ApprovalCreate(BaseModel):
    # Any, so a non-boolean value reaches the service and is reported as a 400
    approved: Any = None
    comments: str = Field("", max_length=200)
    swap_details: Optional[SwapArrangement] = None


def compute_approval_status(approvals: List[dict], required_party_ids: Iterable[Any]) -> ApprovalStatus:
    """
    Derive the approval state for a request.

    Only the latest entry per user is expected in `approvals`. The request is
    approved once every required party has an affirmative entry.
    """
    if not approvals:
        return ApprovalStatus.PENDING
    if any(not entry.get("approved") for entry in approvals):
        return ApprovalStatus.REJECTED
    approved_by = {str(entry.get("user_id")) for entry in approvals if entry.get("approved")}
    required = {str(party_id) for party_id in required_party_ids}
    if required and required.issubset(approved_by):
        return ApprovalStatus.APPROVED
    return ApprovalStatus.PARTIAL


def replace_approval(approvals: List[dict], entry: dict) -> List[dict]:
    """Return approvals with the user's earlier entry replaced by `entry`"""
    user_key = str(entry["user_id"])
    remaining = [approval for approval in approvals if str(approval.get("user_id")) != user_key]
    remaining.append(entry)
    return remaining


class MatchRequestResponse(BaseModel):
    """Model for API responses"""
    id: str
    requester: Optional[dict] = None
    listing: Optional[dict] = None
    message: str
    status: str
    approvals: List[dict] = Field(default_factory=list)
    approval_status: str
    swap_details: dict = Field(default_factory=dict)
    priority: str = Priority.MEDIUM.value
    expires_at: Optional[str] = None
    is_active: bool = True
    response_message: Optional[str] = None
    responded_at: Optional[str] = None
    is_requester: Optional[bool] = None
    is_listing_owner: Optional[bool] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_db_doc(
        cls,
        doc: dict,
        listing: Optional[dict] = None,
        requester: Optional[dict] = None,
        user_id: Optional[str] = None,
    ):
        """Create response model from database document"""
        owner_id = id_str(listing.get("listed_by")) if listing else None
        requester_id = id_str(doc.get("requester_id"))
        approvals = doc.get("approvals", [])
        swap_details = doc.get("swap_details") or {"completed": False, "swap_state": SwapState.NONE.value}
        approval_status = compute_approval_status(approvals, [p for p in (requester_id, owner_id) if p])
        if owner_id is None and approval_status == ApprovalStatus.APPROVED:
            # Without the listing the owner's approval cannot be confirmed
            approval_status = ApprovalStatus.PARTIAL
        return cls(
            id=str(doc["_id"]),
            requester=requester or {"id": requester_id},
            listing=listing_card(listing) if listing else {"id": id_str(doc.get("listing_id"))},
            message=doc.get("message", ""),
            status=doc.get("status"),
            approvals=serialize_value(approvals),
            approval_status=approval_status.value,
            swap_details=serialize_value(swap_details),
            priority=doc.get("priority", Priority.MEDIUM.value),
            expires_at=serialize_value(doc.get("expires_at")),
            is_active=doc.get("is_active", True),
            response_message=doc.get("response_message"),
            responded_at=serialize_value(doc.get("responded_at")),
            is_requester=(requester_id == user_id) if user_id else None,
            is_listing_owner=(owner_id == user_id) if user_id and owner_id else None,
            created_at=serialize_value(doc.get("created_at")),
            updated_at=serialize_value(doc.get("updated_at")),
        )


def listing_card(listing: dict) -> dict:
    """Compact listing embedded in match request responses"""
    return {
        "id": id_str(listing.get("_id")),
        "title": listing.get("title"),
        "listed_by": id_str(listing.get("listed_by")),
        "current_room": serialize_value(listing.get("current_room")),
        "status": listing.get("status"),
        "is_active": listing.get("is_active", True),
    }

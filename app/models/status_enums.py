"""
Centralized status and choice enums for different entities
"""

from enum import Enum


class RequestStatus(str, Enum):
    """Status for match request lifecycle"""
    PENDING = "Pending"            # Waiting for the listing owner
    ACCEPTED = "Accepted"          # Owner accepted, waiting for both approvals
    REJECTED = "Rejected"          # Owner rejected or a party declined the swap
    WITHDRAWN = "Withdrawn"        # Requester pulled the request


class ApprovalStatus(str, Enum):
    """Derived state of the approvals on a match request"""
    PENDING = "pending"            # Nobody has voted yet
    PARTIAL = "partial"            # Some required parties approved
    APPROVED = "approved"          # Every required party approved
    REJECTED = "rejected"          # At least one party declined


class SwapState(str, Enum):
    """Progress of the room swap for a match request"""
    NONE = "none"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class ListingStatus(str, Enum):
    """Status for room listings"""
    OPEN = "Open"
    BIDDING = "Bidding"
    CLOSED = "Closed"


class Gender(str, Enum):
    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"


class GenderPreference(str, Enum):
    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"
    MIXED = "Mixed"


class RoomType(str, Enum):
    SINGLE = "Single"
    DOUBLE = "Double"
    DOUBLE_SHARED = "Double Shared"
    TRIPLE = "Triple"
    QUADRUPLE = "Quadruple"
    SHARED = "Shared"


class Urgency(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    URGENT = "Urgent"


class Priority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class MessageType(str, Enum):
    """Common chat message kinds"""
    TEXT = "text"
    IMAGE = "image"
    POLL = "poll"


class EventStatus(str, Enum):
    """Moderation status for submitted events"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class EventType(str, Enum):
    ACADEMIC = "Academic"
    SPORTS = "Sports"
    CULTURAL = "Cultural"
    TECHNICAL = "Technical"
    SOCIAL = "Social"
    WORKSHOP = "Workshop"
    SEMINAR = "Seminar"
    OTHER = "Other"


class FriendRequestStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"


class RoomUpdateRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

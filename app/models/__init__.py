"""SQLAlchemy models.

Importing this package registers every table on ``Base.metadata`` so that
relationship strings resolve.
"""

from app.models.advisor import Advisor, VerificationStatus
from app.models.conversation import Conversation, Message, MessageRole, UrgencyLevel
from app.models.knowledge import AdvisorDocument, AdvisorEmbedding
from app.models.escalation import EscalationRule, ConversationCapture, CaptureStatus
from app.models.commerce import AgentOffering, AgentPurchase, OfferingType, PurchaseStatus
from app.models.system import AnalyticsEvent

__all__ = [
    "Advisor",
    "VerificationStatus",
    "Conversation",
    "Message",
    "MessageRole",
    "UrgencyLevel",
    "AdvisorDocument",
    "AdvisorEmbedding",
    "EscalationRule",
    "ConversationCapture",
    "CaptureStatus",
    "AgentOffering",
    "AgentPurchase",
    "OfferingType",
    "PurchaseStatus",
    "AnalyticsEvent",
]

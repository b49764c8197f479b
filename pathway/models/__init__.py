from .base import Base
from .chat import ChatConversation, ChatMessage
from .error_code import ErrorCode
from .essay_analysis import EssayAnalysis
from .event import Event
from .message_limits import MessageLimits
from .profile import Profile
from .saved_university import SavedUniversity
from .subscription import Subscription

__all__ = [
    "Base",
    "ChatConversation",
    "ChatMessage",
    "ErrorCode",
    "EssayAnalysis",
    "Event",
    "MessageLimits",
    "Profile",
    "SavedUniversity",
    "Subscription",
]

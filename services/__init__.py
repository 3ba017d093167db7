from .threads import ThreadService
from .messages import MessageService
from .auth import AuthService
from .provider import ChatProvider
from .titles import TitleGenerator
from .rate_limiter import RateLimiter
from .monitoring import PerformanceMonitor
from .chat import ChatCoordinator

__all__ = ["ThreadService", "MessageService", "AuthService", "ChatProvider", "TitleGenerator",
           "RateLimiter", "PerformanceMonitor", "ChatCoordinator"]

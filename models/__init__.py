from .threads import Thread, Base, PROVISIONAL_TITLE_SOURCES
from .messages import Message, MESSAGE_ROLES

__all__ = ["Thread", "Message", "Base", "PROVISIONAL_TITLE_SOURCES", "MESSAGE_ROLES"]

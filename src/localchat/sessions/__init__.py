from localchat.sessions.schema import DEFAULT_TITLE, ChatSession, Message, Role
from localchat.sessions.store import ConversationStore

__all__ = ["DEFAULT_TITLE", "ChatSession", "ConversationStore", "Message", "Role"]

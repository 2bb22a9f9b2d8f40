# API package
# Contains API endpoints and request/response models

from . import approvals, chat, servers

__all__ = ["approvals", "chat", "servers"]

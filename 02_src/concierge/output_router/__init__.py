"""Output router module."""

from .router import DeliveredReply, IReplyRouter, ReplyRouter

__all__ = ["DeliveredReply", "IReplyRouter", "ReplyRouter"]

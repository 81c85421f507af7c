"""Shared schema exports."""

from .account import AccountView, UserInfo

__all__ = [
    "AccountView",
    "UserInfo",
]

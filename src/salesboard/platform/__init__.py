"""Hosted platform integration -- adapter interfaces and the Supabase backend.

Provides abstract IdentityProvider, DealStore, and ChangeFeed interfaces with
a concrete implementation on the Supabase SDK (see ``platform.supabase``,
imported lazily so the interfaces carry no SDK dependency).
"""

from src.salesboard.platform.base import (
    DEAL_ENTITY,
    AuthEvent,
    AuthSession,
    ChangeFeed,
    CurrentUser,
    DealStore,
    FeedState,
    FeedSubscription,
    IdentityProvider,
    Platform,
    PlatformFactory,
)

__all__ = [
    "DEAL_ENTITY",
    "AuthEvent",
    "AuthSession",
    "ChangeFeed",
    "CurrentUser",
    "DealStore",
    "FeedState",
    "FeedSubscription",
    "IdentityProvider",
    "Platform",
    "PlatformFactory",
]

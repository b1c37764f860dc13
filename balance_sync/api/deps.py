"""Shared FastAPI dependencies.

The scheduler, partner client and discovery prober are attached to
``app.state`` by the lifespan; tests replace them on ``app.state`` or via
``app.dependency_overrides``.
"""

from fastapi import Header, Request

from balance_sync.clients.discovery import ApiDiscovery
from balance_sync.clients.partner_client import PartnerClient
from balance_sync.services.history_service import Actor
from balance_sync.services.sync_scheduler import SyncScheduler

DEFAULT_ACTOR = Actor(email="unknown@local", name="Unknown")


def get_scheduler(request: Request) -> SyncScheduler:
    return request.app.state.scheduler


def get_partner_client(request: Request) -> PartnerClient:
    client = getattr(request.app.state, "partner_client", None)
    return client or PartnerClient()


def get_discovery(request: Request) -> ApiDiscovery:
    discovery = getattr(request.app.state, "discovery", None)
    return discovery or ApiDiscovery()


def get_actor(
    x_actor_email: str | None = Header(default=None),
    x_actor_name: str | None = Header(default=None),
) -> Actor:
    """Actor identity from X-Actor-Email / X-Actor-Name headers."""
    if not x_actor_email:
        return DEFAULT_ACTOR
    return Actor(email=x_actor_email, name=x_actor_name or x_actor_email)

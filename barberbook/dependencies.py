"""Request dependencies for collaborators built once in the app lifespan"""

from fastapi import Request

from .domain.store.repository import EntityStore
from .services.scheduling_provider import SchedulingProvider


def get_entity_store(request: Request) -> EntityStore:
    return request.app.state.store


def get_scheduling_provider(request: Request) -> SchedulingProvider:
    return request.app.state.provider

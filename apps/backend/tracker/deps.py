from fastapi import Request

from tracker.core.config import Settings
from tracker.services.event_store import EventStore


# Built in main.lifespan and parked on app.state; no module-level store.
def get_store(request: Request) -> EventStore:
    return request.app.state.store


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings

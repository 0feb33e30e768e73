"""Dispatch layer: response envelopes and FastAPI routes over a QueryFacade."""

from repokit.api.controller import ControllerMessages, Envelope, ResourceController
from repokit.api.router import build_router

__all__ = ["ControllerMessages", "Envelope", "ResourceController", "build_router"]

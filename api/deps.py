"""
api/deps.py -- Small Depends() providers shared by the v1 routers.

Collaborators live on app.state (built in the lifespan hook). Routes pull
them through these helpers instead of reaching into request.app.state
inline, so tests can read the same wiring the routes use.
"""

from __future__ import annotations

from fastapi import Request

from auth.service import AuthService
from auth.store import UserStore
from core.config import AuthConfig
from core.query import parse_query_params
from tours.store import TourStore


def user_store(request: Request) -> UserStore:
    return request.app.state.user_store


def tour_store(request: Request) -> TourStore:
    return request.app.state.tour_store


def auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def auth_config(request: Request) -> AuthConfig:
    return request.app.state.auth_config


def listing_params(request: Request) -> dict:
    """Query string -> Query Composer parameter mapping."""
    return parse_query_params(request.query_params.multi_items())

"""
Name: Versioned Route Groups

Responsibilities:
  - Declare the route groups of the service and mount each one under /api/v1/<name>
  - Compute every prefix with the same function (no hand-written prefixes)
  - Give handlers access to the injected data store

Collaborators:
  - api/pipeline.py: calls include_route_groups() during assembly
  - Domain handlers: attach their endpoints to the group routers

Notes:
  - Group routers start empty; the domain handlers register on them before
    the app is assembled
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from fastapi import APIRouter, FastAPI, Request

from ..infrastructure.db import DataStoreHandle

API_VERSION = "v1"

ROUTE_GROUP_NAMES: tuple[str, ...] = (
    "auth",
    "users",
    "categories",
    "videos",
    "comments",
    "replies",
    "feelings",
    "subscriptions",
    "histories",
    "search",
)


@dataclass(frozen=True)
class RouteGroup:
    name: str
    router: APIRouter

    @property
    def prefix(self) -> str:
        return versioned_prefix(self.name)


def versioned_prefix(name: str) -> str:
    """Mount point for a route group: /api/v1/<name>."""
    name = name.strip().strip("/")
    if not name:
        raise ValueError("route group name must not be empty")
    return f"/api/{API_VERSION}/{name}"


def default_route_groups() -> list[RouteGroup]:
    return [
        RouteGroup(name=name, router=APIRouter(tags=[name]))
        for name in ROUTE_GROUP_NAMES
    ]


def include_route_groups(app: FastAPI, groups: Iterable[RouteGroup]) -> list[str]:
    """Mount every group at its versioned prefix; returns the prefixes in order."""
    prefixes: list[str] = []
    seen: set[str] = set()
    for group in groups:
        if group.name in seen:
            raise ValueError(f"duplicate route group: {group.name}")
        seen.add(group.name)
        app.include_router(group.router, prefix=group.prefix)
        prefixes.append(group.prefix)
    return prefixes


# ---------------------------------------------------------------------------
# Dependencies for route handlers
# ---------------------------------------------------------------------------
def get_data_store(request: Request) -> DataStoreHandle:
    """FastAPI dependency returning the process-wide store handle."""
    return request.app.state.data_store


__all__ = [
    "ROUTE_GROUP_NAMES",
    "RouteGroup",
    "versioned_prefix",
    "default_route_groups",
    "include_route_groups",
    "get_data_store",
]

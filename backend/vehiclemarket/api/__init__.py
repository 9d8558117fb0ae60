"""API routers package."""

from vehiclemarket.api import negotiations, events, deps

__all__ = [
    "negotiations",
    "events",
    "deps",
]

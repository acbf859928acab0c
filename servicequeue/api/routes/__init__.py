"""Route modules exposed by the API package."""

from . import ping, services, stream, tickets

__all__ = ["ping", "services", "stream", "tickets"]

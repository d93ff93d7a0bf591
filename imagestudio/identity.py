from __future__ import annotations

from fastapi import Request

UNKNOWN_IDENTITY = "unknown"


def get_client_identity(request: Request) -> str:
    # Proxies in front of the service append to X-Forwarded-For; the first hop is the client.
    forwarded = request.headers.get("x-forwarded-for") or ""
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_IDENTITY

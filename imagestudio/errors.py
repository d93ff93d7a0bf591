from __future__ import annotations


class InvalidIdentityError(ValueError):
    def __init__(self, identity: object):
        self.identity = identity
        super().__init__("Caller identity must be a non-empty string")


class UpstreamConfigError(RuntimeError):
    pass


class UpstreamError(RuntimeError):
    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = (detail or "")[:500]
        super().__init__(f"Upstream image provider failed with status {status_code}")

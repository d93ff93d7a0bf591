from __future__ import annotations

import logging
from typing import Any, Iterable, NamedTuple

from imagestudio.errors import InvalidIdentityError
from imagestudio.ledger import UsageLedger

logger = logging.getLogger("image-studio.admission")

UNLIMITED_PERIOD = "unlimited"


class AdmissionResult(NamedTuple):
    allowed: bool
    period: str
    used: int | None = None
    remaining: int | None = None
    limit: int | None = None

    def to_usage(self) -> dict[str, Any]:
        usage: dict[str, Any] = {"period": self.period}
        for field in ("limit", "used", "remaining"):
            value = getattr(self, field)
            if value is not None:
                usage[field] = value
        return usage


def normalize_identity(identity: Any) -> str:
    if not isinstance(identity, str):
        raise InvalidIdentityError(identity)
    normalized = identity.strip()
    if not normalized:
        raise InvalidIdentityError(identity)
    return normalized


def admit(
    ledger: UsageLedger,
    identity: str,
    limit: int,
    admin_identities: frozenset[str],
) -> AdmissionResult:
    """Decide whether ``identity`` may consume one unit and charge it if so.

    Admin identities bypass the ledger entirely. For everyone else the
    read-check-increment sequence runs under the identity's ledger lock, and a
    denied call leaves the counter unchanged.
    """
    identity = normalize_identity(identity)
    if identity in admin_identities:
        return AdmissionResult(allowed=True, period=UNLIMITED_PERIOD)

    with ledger.hold(identity):
        record = ledger.get_or_init(identity)
        if record.count >= limit:
            logger.info("Monthly limit reached for '%s' (%s/%s)", identity, record.count, limit)
            return AdmissionResult(
                allowed=False,
                period=str(record.period),
                used=record.count,
                remaining=0,
                limit=limit,
            )
        record = ledger.increment(identity)

    return AdmissionResult(
        allowed=True,
        period=str(record.period),
        used=record.count,
        remaining=max(0, limit - record.count),
        limit=limit,
    )


class AdmissionController:
    """Owns the quota configuration and the ledger it charges against.

    Quota is charged when admission is granted, before any upstream work
    starts. A failed upstream call does not refund the unit.
    """

    def __init__(self, ledger: UsageLedger, limit: int, admin_identities: Iterable[str] = ()):
        if limit <= 0:
            raise ValueError(f"limit must be a positive integer, got {limit}")
        self.ledger = ledger
        self.limit = limit
        self.admin_identities = frozenset(
            identity.strip() for identity in admin_identities if identity and identity.strip()
        )

    def check_and_consume(self, identity: str, limit: int | None = None) -> AdmissionResult:
        effective_limit = self.limit if limit is None else limit
        if effective_limit <= 0:
            raise ValueError(f"limit must be a positive integer, got {effective_limit}")
        return admit(self.ledger, identity, effective_limit, self.admin_identities)

    def usage(self, identity: str) -> AdmissionResult:
        identity = normalize_identity(identity)
        if identity in self.admin_identities:
            return AdmissionResult(allowed=True, period=UNLIMITED_PERIOD)

        record = self.ledger.peek(identity)
        if record is None:
            period = str(self.ledger.period())
            used = 0
        else:
            period = str(record.period)
            used = record.count
        return AdmissionResult(
            allowed=used < self.limit,
            period=period,
            used=used,
            remaining=max(0, self.limit - used),
            limit=self.limit,
        )

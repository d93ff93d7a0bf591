"""Shared fixtures for gateway tests."""

from __future__ import annotations

import io

import pytest
from PIL import Image

from imagestudio.admission import AdmissionController
from imagestudio.ledger import UsageLedger
from imagestudio.period import Period


class FakeClock:
    def __init__(self, period: Period):
        self.period = period

    def __call__(self) -> Period:
        return self.period


def make_image_bytes(image_format: str = "PNG", size: tuple[int, int] = (8, 8)) -> bytes:
    image = Image.new("RGB", size, (200, 120, 40))
    with io.BytesIO() as buffer:
        image.save(buffer, format=image_format)
        return buffer.getvalue()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(Period(2025, 10))


@pytest.fixture
def ledger(clock: FakeClock) -> UsageLedger:
    return UsageLedger(clock=clock)


@pytest.fixture
def controller(ledger: UsageLedger) -> AdmissionController:
    return AdmissionController(ledger, limit=10, admin_identities={"10.0.0.99"})


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes("PNG")


@pytest.fixture
def image_bytes_factory():
    return make_image_bytes

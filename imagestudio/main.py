from __future__ import annotations

import logging
import time
from functools import lru_cache

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from imagestudio.admission import AdmissionController, AdmissionResult
from imagestudio.config import (
    get_admin_identities,
    get_cors_allow_origins,
    get_log_level,
    get_max_images_per_month,
)
from imagestudio.errors import InvalidIdentityError, UpstreamConfigError, UpstreamError
from imagestudio.identity import get_client_identity
from imagestudio.ledger import UsageLedger
from imagestudio.period import seconds_until_next_period
from imagestudio.upstream import GeminiClient, HuggingFaceClient, get_upstream_client, to_data_url

logging.basicConfig(level=get_log_level())
logger = logging.getLogger("image-studio")

QUOTA_EXCEEDED_REASON = "monthly_limit_reached"


class GenerateRequest(BaseModel):
    prompt: str = Field(min_length=1, max_length=2000)
    mode: str | None = Field(default=None, max_length=50)
    size: str | None = Field(default=None, max_length=50)
    detail: str | None = Field(default=None, max_length=50)


class UsageSnapshot(BaseModel):
    period: str
    limit: int | None = None
    used: int | None = None
    remaining: int | None = None


class GenerateResponse(BaseModel):
    image: str
    usage: UsageSnapshot
    model: str
    latency_ms: int


class UsageResponse(BaseModel):
    usage: UsageSnapshot


@lru_cache(maxsize=1)
def get_admission_controller() -> AdmissionController:
    controller = AdmissionController(
        ledger=UsageLedger(),
        limit=get_max_images_per_month(),
        admin_identities=get_admin_identities(),
    )
    logger.info(
        "Quota: %s images per identity per month, %s admin identities",
        controller.limit,
        len(controller.admin_identities),
    )
    return controller


def usage_payload(result: AdmissionResult) -> dict:
    return UsageSnapshot(**result.to_usage()).model_dump(exclude_none=True)


app = FastAPI(title="Image Studio Gateway")

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_allow_origins(),
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info("%s %s from %s", request.method, request.url.path, get_client_identity(request))
    return await call_next(request)


@app.get("/")
async def health(
    controller: AdmissionController = Depends(get_admission_controller),
    upstream: HuggingFaceClient | GeminiClient = Depends(get_upstream_client),
) -> dict:
    return {
        "status": "ok",
        "provider": upstream.provider,
        "model": upstream.model,
        "upstream_configured": upstream.is_configured(),
        "limitPerIpPerMonth": controller.limit,
        "trackedIdentities": len(controller.ledger),
    }


@app.get("/usage", response_model=UsageResponse, response_model_exclude_none=True)
def usage(
    request: Request,
    controller: AdmissionController = Depends(get_admission_controller),
) -> UsageResponse:
    try:
        result = controller.usage(get_client_identity(request))
    except InvalidIdentityError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return UsageResponse(usage=UsageSnapshot(**result.to_usage()))


@app.post("/generate", response_model=GenerateResponse, response_model_exclude_none=True)
def generate(
    payload: GenerateRequest,
    request: Request,
    controller: AdmissionController = Depends(get_admission_controller),
    upstream: HuggingFaceClient | GeminiClient = Depends(get_upstream_client),
):
    # Checked before admission so a misconfigured server never charges callers.
    if not upstream.is_configured():
        raise HTTPException(
            status_code=500,
            detail=f"The {upstream.provider} API key is not configured on the server.",
        )

    identity = get_client_identity(request)
    try:
        admission = controller.check_and_consume(identity)
    except InvalidIdentityError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    usage_info = usage_payload(admission)
    if not admission.allowed:
        return JSONResponse(
            status_code=429,
            content={
                "error": "Monthly image limit reached for this device / connection. "
                "Try again next month or upgrade access.",
                "reason": QUOTA_EXCEEDED_REASON,
                "usage": usage_info,
            },
            headers={"Retry-After": str(seconds_until_next_period(period=controller.ledger.period()))},
        )

    start = time.perf_counter()
    try:
        image = upstream.generate(payload.prompt, mode=payload.mode, size=payload.size, detail=payload.detail)
    except UpstreamError as exc:
        logger.warning("Upstream %s failed for '%s': %s", upstream.provider, identity, exc)
        return JSONResponse(
            status_code=502,
            content={
                "error": "Image generation failed upstream.",
                "detail": exc.detail,
                "usage": usage_info,
            },
        )
    except UpstreamConfigError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except Exception:
        logger.exception("Error calling %s for '%s'", upstream.provider, identity)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Server error while generating image.",
                "usage": usage_info,
            },
        )

    return GenerateResponse(
        image=to_data_url(image),
        usage=UsageSnapshot(**usage_info),
        model=upstream.model,
        latency_ms=int((time.perf_counter() - start) * 1000),
    )

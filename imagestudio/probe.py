from __future__ import annotations

import argparse
import sys
import time
from typing import Any

import requests

DEFAULT_BASE_URL = "http://127.0.0.1:8000"
DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_PROMPT = "A small lighthouse on a rocky coast at dusk, flat illustration."


def describe_usage(usage: Any) -> str:
    if not isinstance(usage, dict):
        return "usage=-"
    if usage.get("period") == "unlimited":
        return "usage=unlimited"
    return (
        f"period={usage.get('period', '-')} "
        f"used={usage.get('used', '-')}/{usage.get('limit', '-')} "
        f"remaining={usage.get('remaining', '-')}"
    )


def run_attempt(
    session: requests.Session,
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str],
    timeout_seconds: float,
) -> tuple[int, int, str]:
    started = time.perf_counter()
    try:
        response = session.post(url, json=payload, headers=headers, timeout=timeout_seconds)
    except requests.RequestException as error:
        latency_ms = int((time.perf_counter() - started) * 1000)
        return 0, latency_ms, f"type={type(error).__name__} detail={str(error).strip()}"

    latency_ms = int((time.perf_counter() - started) * 1000)
    try:
        body = response.json()
    except ValueError:
        body = {}
    detail = describe_usage(body.get("usage") if isinstance(body, dict) else None)
    if response.status_code == 429:
        detail = f"{detail} retry_after={response.headers.get('Retry-After', '-')}"
    elif response.status_code != 200 and isinstance(body, dict):
        error = body.get("error") or body.get("detail") or ""
        detail = f"{detail} error={str(error)[:120]}"
    return response.status_code, latency_ms, detail


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Call a running image studio gateway repeatedly and report quota usage.",
    )
    parser.add_argument("--base-url", default=DEFAULT_BASE_URL, help=f"Gateway base URL (default: {DEFAULT_BASE_URL}).")
    parser.add_argument("--attempts", type=int, default=3, help="Number of /generate calls (default: 3).")
    parser.add_argument(
        "--forwarded-for",
        default="",
        help="Value sent as X-Forwarded-For, to probe the quota of a specific identity.",
    )
    parser.add_argument("--prompt", default=DEFAULT_PROMPT, help="Prompt text sent in each request.")
    parser.add_argument("--size", default="", help="Optional size hint: portrait, landscape or square.")
    parser.add_argument("--detail", default="fast", help="Detail hint (default: fast).")
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT_SECONDS,
        help=f"Per-request timeout in seconds (default: {DEFAULT_TIMEOUT_SECONDS:g}).",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    attempts = max(1, int(args.attempts))
    url = args.base_url.rstrip("/") + "/generate"
    headers = {"X-Forwarded-For": args.forwarded_for} if args.forwarded_for.strip() else {}
    payload: dict[str, Any] = {"prompt": args.prompt, "detail": args.detail}
    if args.size:
        payload["size"] = args.size

    print(f"[info] url={url} attempts={attempts} identity={args.forwarded_for or '<connection>'}")

    counts = {"ok": 0, "denied": 0, "failed": 0}
    with requests.Session() as session:
        for index in range(1, attempts + 1):
            status, latency_ms, detail = run_attempt(session, url, payload, headers, args.timeout)
            if status == 200:
                counts["ok"] += 1
                label = "OK"
            elif status == 429:
                counts["denied"] += 1
                label = "DENIED"
            else:
                counts["failed"] += 1
                label = "FAIL"
            print(f"[{index}/{attempts}] {label} status={status or '-'} {latency_ms}ms {detail}")

    print(f"[summary] ok={counts['ok']} denied={counts['denied']} failed={counts['failed']}")
    return 0 if counts["failed"] == 0 else 1


if __name__ == "__main__":
    sys.exit(main())

from __future__ import annotations

import time

import httpx


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 2)


def check_dashboard(url: str, timeout_s: float = 2.0, client: httpx.Client | None = None) -> tuple[bool, str, float | None]:
    """Probe Traefik's ``/api/overview``; it answers 200 with a JSON object when up.

    Returns (is_reachable, message, latency_ms).
    """
    started = time.perf_counter()
    owned = client is None
    http = client or httpx.Client(timeout=timeout_s, follow_redirects=False)
    try:
        resp = http.get(url)
    except (httpx.ConnectError, httpx.TimeoutException):
        return False, "No response", _elapsed_ms(started)
    except httpx.HTTPError as e:
        return False, f"Error: {type(e).__name__}: {e}", _elapsed_ms(started)
    finally:
        if owned:
            http.close()

    latency_ms = _elapsed_ms(started)
    if resp.status_code != 200:
        return False, f"HTTP {resp.status_code}", latency_ms
    try:
        payload = resp.json()
    except ValueError:
        return False, "Invalid JSON", latency_ms
    if not isinstance(payload, dict):
        return False, f"Unexpected payload: {payload!r}", latency_ms
    return True, "Reachable", latency_ms

"""
Retry/backoff and rate-limit-aware HTTP helper shared by the service clients.
Transient failures (connection errors, 429/503, exhausted rate limits) are retried with
exponential backoff; any other response is returned to the caller as-is.
"""

import email.utils
import logging
import os
import random
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

# retry/backoff defaults from environment
DEFAULT_MAX_RETRIES = int(os.getenv("OFFICEBOT_MAX_RETRIES", "3"))
DEFAULT_BACKOFF_BASE = float(os.getenv("OFFICEBOT_BACKOFF_BASE", "0.5"))
_env_jitter = os.getenv("OFFICEBOT_BACKOFF_JITTER")
DEFAULT_BACKOFF_JITTER = float(_env_jitter) if _env_jitter is not None and _env_jitter != "" else None
DEFAULT_MAX_BACKOFF = float(os.getenv("OFFICEBOT_MAX_BACKOFF", "120.0"))
DEFAULT_TIMEOUT = float(os.getenv("OFFICEBOT_HTTP_TIMEOUT", "30.0"))

# runtime-overrides
_runtime_max_retries: Optional[int] = None
_runtime_backoff_base: Optional[float] = None
_runtime_backoff_jitter: Optional[float] = None
_runtime_max_backoff: Optional[float] = None


def configure_retry(
    max_retries: Optional[int] = None, backoff_base: Optional[float] = None, backoff_jitter: Optional[float] = None, max_backoff: Optional[float] = None
):
    """Configure retry/backoff defaults at runtime (e.g. from the config file)."""
    global _runtime_max_retries, _runtime_backoff_base, _runtime_backoff_jitter, _runtime_max_backoff
    if max_retries is not None:
        _runtime_max_retries = int(max_retries)
    if backoff_base is not None:
        _runtime_backoff_base = float(backoff_base)
    if backoff_jitter is not None:
        _runtime_backoff_jitter = float(backoff_jitter)
    if max_backoff is not None:
        _runtime_max_backoff = float(max_backoff)


def _parse_retry_after(raw_ra: str):
    if not raw_ra:
        return None
    try:
        return float(raw_ra)
    except ValueError:
        try:
            dt = email.utils.parsedate_to_datetime(raw_ra)
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            ra = (dt - datetime.now(timezone.utc)).total_seconds()
            return max(0.0, ra)
        except (TypeError, ValueError):
            return None


def _header_number(headers, key: str, cast):
    try:
        val = headers.get(key)
        return cast(val) if val is not None else None
    except (TypeError, ValueError):
        return None


def _parse_rate_headers(resp):
    headers = getattr(resp, 'headers', None) or {}
    ra = _parse_retry_after(headers.get('Retry-After'))
    rl_remaining = _header_number(headers, 'X-RateLimit-Remaining', int)
    rl_reset = _header_number(headers, 'X-RateLimit-Reset', float)
    return ra, rl_remaining, rl_reset


def _resolve_backoff_params(backoff_base_local: Optional[float]):
    if backoff_base_local is not None:
        base_local = float(backoff_base_local)
    elif _runtime_backoff_base is not None:
        base_local = float(_runtime_backoff_base)
    else:
        base_local = float(DEFAULT_BACKOFF_BASE)

    if _runtime_backoff_jitter is not None:
        jitter_local = float(_runtime_backoff_jitter)
    elif DEFAULT_BACKOFF_JITTER is not None:
        jitter_local = float(DEFAULT_BACKOFF_JITTER)
    else:
        jitter_local = base_local

    max_backoff_resolved = float(_runtime_max_backoff) if _runtime_max_backoff is not None else float(DEFAULT_MAX_BACKOFF)
    return base_local, jitter_local, max_backoff_resolved


def _parse_body(resp):
    try:
        return resp.json()
    except ValueError:
        return getattr(resp, 'content', None)


def _should_retry_response(status_code: int, ra_local: Optional[float], rl_remaining_local: Optional[int]) -> bool:
    if status_code in (429, 503):
        return True
    if status_code >= 400 and ra_local is not None:
        return True
    if status_code >= 400 and rl_remaining_local is not None and rl_remaining_local <= 0:
        return True
    return False


def _compute_wait_seconds(ra_local: Optional[float], rl_reset_local: Optional[float], backoff_local: float, jitter_local: float) -> float:
    if ra_local is not None:
        return min(float(ra_local) + random.uniform(0, jitter_local), 300.0)
    if rl_reset_local:
        wait = max(0.0, float(rl_reset_local) - time.time())
        return min(wait + random.uniform(0, jitter_local), 300.0)
    return min(backoff_local + random.uniform(0, jitter_local), 300.0)


def _result(body: Any, status: int, headers=None) -> Dict[str, Any]:
    return {'response': body, 'status': status, 'headers': dict(headers or {}), 'timestamp': time.time()}


def request_with_retries(
    method: str,
    url: str,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
    json: Any = None,
    data: Any = None,
    auth=None,
    max_retries: Optional[int] = None,
    backoff_base: Optional[float] = None,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """Perform one HTTP call with retries. Returns {'response', 'status', 'headers', 'timestamp'}.

    'response' is the decoded JSON body when possible, raw bytes otherwise. A status of 0 means
    every attempt failed at the connection level.
    """
    base, jitter_val, max_backoff_resolved = _resolve_backoff_params(backoff_base)
    effective_max_retries = int(_runtime_max_retries) if _runtime_max_retries is not None else int(max_retries or DEFAULT_MAX_RETRIES)
    backoff = base
    last_result = _result(None, 0)

    for attempt in range(max(1, effective_max_retries)):
        try:
            resp = requests.request(
                method, url, headers=headers or {}, params=params or {}, json=json, data=data, auth=auth, timeout=timeout or DEFAULT_TIMEOUT
            )
        except requests.RequestException as ex:
            logger.warning("%s %s failed (attempt %d): %s", method, url, attempt + 1, ex)
            last_result = _result(str(ex), 0)
            time.sleep(min(backoff + random.uniform(0, jitter_val), max_backoff_resolved))
            backoff = min(backoff * 2, max_backoff_resolved)
            continue

        status = getattr(resp, 'status_code', 0)
        ra, rl_remaining, rl_reset = _parse_rate_headers(resp)
        if _should_retry_response(status, ra, rl_remaining):
            wait_seconds = _compute_wait_seconds(ra, rl_reset, backoff, jitter_val)
            logger.warning("%s %s rate limited with %s, retrying in %.1fs", method, url, status, wait_seconds)
            last_result = _result(getattr(resp, 'text', None), status, getattr(resp, 'headers', None))
            time.sleep(wait_seconds)
            backoff = min(backoff * 2, max_backoff_resolved)
            continue
        return _result(_parse_body(resp), status, getattr(resp, 'headers', None))

    return last_result


__all__ = ["configure_retry", "request_with_retries"]

"""Blocking JSON POST shared by the OpenAI-compatible adapters.

Callers run ``post_json`` in ``asyncio.to_thread``. Transport and decoding
failures are raised as the caller's ``DependencyError`` subclass; HTTP
errors keep their status code when the error type accepts one.
"""

from __future__ import annotations

import json
from typing import Any
from urllib.error import HTTPError
from urllib.error import URLError
from urllib.request import Request
from urllib.request import urlopen

from gravitas.errors import DependencyError
from gravitas.errors import LLMError

_DETAIL_CHARS = 200


def post_json(
    url: str,
    payload: dict[str, Any],
    *,
    api_key: str,
    timeout: float,
    error: type[DependencyError],
) -> dict[str, Any]:
    request = Request(
        url=url,
        data=json.dumps(payload).encode("utf-8"),
        headers={
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        },
        method="POST",
    )
    try:
        with urlopen(request, timeout=timeout) as response:
            raw = response.read().decode("utf-8")
    except HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")[:_DETAIL_CHARS]
        message = f"provider HTTP {exc.code}: {detail}"
        if issubclass(error, LLMError):
            raise error(message, status=exc.code) from exc
        raise error(message) from exc
    except URLError as exc:
        raise error(f"provider network error: {exc.reason}") from exc
    except OSError as exc:
        raise error(f"provider IO error: {exc}") from exc

    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise error("provider returned invalid JSON") from exc
    if not isinstance(data, dict):
        raise error("provider returned a non-object JSON body")
    return data

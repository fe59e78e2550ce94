"""Container healthcheck for the opguard-mcp server.

Polls the HTTP /health route and requires both a healthy status and a ready
execution coordinator. Exit code 0 indicates healthy. The URL can be
overridden with OPGUARD_MCP_HEALTH_URL.
"""

from __future__ import annotations

import json
import os
import sys
from typing import Final
from urllib.request import Request, urlopen

DEFAULT_URL: Final[str] = "http://127.0.0.1:8000/health"


def check(url: str) -> str | None:
    """Return None when healthy, otherwise a reason."""
    req = Request(url, headers={"User-Agent": "opguard-mcp/healthcheck"})  # noqa: S310
    with urlopen(req, timeout=4) as resp:  # noqa: S310 - operator supplied URL
        if resp.status != 200:
            return f"unexpected status: {resp.status}"
        data = json.loads(resp.read().decode("utf-8"))
    if data.get("status") != "healthy":
        return f"payload not healthy: {data}"
    if data.get("coordinator") != "ready":
        return f"coordinator not ready: {data.get('coordinator')}"
    return None


def main() -> int:
    url = os.getenv("OPGUARD_MCP_HEALTH_URL", DEFAULT_URL)
    try:
        reason = check(url)
    except (OSError, ValueError) as exc:
        print(f"healthcheck error: {exc}", file=sys.stderr)
        return 1
    if reason is not None:
        print(reason, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover - used by Docker
    raise SystemExit(main())

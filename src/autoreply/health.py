"""Health and readiness endpoints for container orchestration.

Provides two top-level routes:

- ``GET /health`` -- Liveness probe.  Returns 200 if the process is alive.
- ``GET /ready``  -- Readiness probe.  Returns 200 only when the reply
  ledger answers a query **and** the credential provider holds a usable
  credential.  Returns 503 with per-check details otherwise.
"""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


def register_health_routes(app: FastAPI) -> None:
    """Register ``/health`` and ``/ready`` endpoints on *app*.

    Args:
        app: The FastAPI application instance.
    """

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Liveness probe -- always returns 200 if the process is running."""
        return {"status": "healthy"}

    @app.get("/ready")
    async def ready(request: Request) -> JSONResponse:
        """Readiness probe -- checks the ledger and credential availability."""
        services: dict[str, Any] = request.app.state.services
        checks: dict[str, str] = {}

        ledger = services.get("ledger")
        if ledger is not None and await asyncio.to_thread(ledger.ping):
            checks["ledger"] = "ok"
        else:
            checks["ledger"] = "fail"

        credentials = services.get("credentials")
        if credentials is not None and credentials.has_credentials():
            checks["credentials"] = "ok"
        else:
            checks["credentials"] = "fail"

        all_ok = all(v == "ok" for v in checks.values())
        status = "ready" if all_ok else "not_ready"
        code = 200 if all_ok else 503

        return JSONResponse(content={"status": status, "checks": checks}, status_code=code)

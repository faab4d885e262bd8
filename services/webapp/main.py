"""
Entrypoint for the earnings and leaderboard web service.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import FastAPI

from services.webapp import routes
from services.webapp.dependencies import get_earnings_service, get_holdings_store, get_price_oracle

app = FastAPI(
    title="stocksim-earnings",
    description="Earnings aggregation and leaderboards for the paper trading simulator",
    version="0.1.0",
)

logger = logging.getLogger(__name__)

app.include_router(routes.router)


@app.on_event("startup")
async def _startup() -> None:
    get_earnings_service().start()


@app.on_event("shutdown")
async def _shutdown() -> None:
    try:
        get_earnings_service().shutdown()
    except Exception as exc:
        logger.warning("Failed to stop earnings service cleanly: %s", exc)
    for collaborator in (get_price_oracle(), get_holdings_store()):
        close = getattr(collaborator, "close", None)
        if close is not None:
            close()


@app.get("/healthz", include_in_schema=False)
def healthcheck() -> dict:
    return {"status": "ok", "time": datetime.now(tz=timezone.utc).isoformat()}

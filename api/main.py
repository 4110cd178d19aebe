import logging
import os
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI

from api.deps import get_metrics_ledger, get_response_cache
from api.routes.assistant import router as assistant_router
from api.routes.metrics import router as metrics_router
from api.schemas.assistant import HealthResponse

logger = logging.getLogger(__name__)

_STARTED_AT = time.monotonic()


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    """Create the cache (clearing the previous snapshot) and load the ledger at startup."""
    cache = get_response_cache()
    ledger = get_metrics_ledger()
    logger.info(
        "Assistant started (cache snapshot %s, ledger %s with %d records)",
        cache.path,
        ledger.path,
        len(ledger),
    )
    yield


app = FastAPI(title="Support Assistant", lifespan=lifespan)

app.include_router(assistant_router)
app.include_router(metrics_router)


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    """Return a liveness check with server time and process uptime."""
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime=round(time.monotonic() - _STARTED_AT, 3),
    )


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "3000")))

"""
TIER SIGNAL — FastAPI Application
Consumer read API. Every record leaves through the entitlement gate; there
is no ungated read endpoint.
"""
import uuid
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from tier_signal.config.settings import get_settings
from tier_signal.data.models import Timeframe
from tier_signal.entitlements.models import Consumer
from tier_signal.pipeline.service import SignalService
from tier_signal.store.keys import RecordKind, record_type_for
from tier_signal.store.models import record_to_dict
from tier_signal.utils.helpers import asset_slug, utc_now, utc_timestamp
from tier_signal.utils.logger import get_logger, setup_logging

logger = get_logger("api")


class SubscribeRequest(BaseModel):
    webhook_url: str = Field(min_length=1)
    webhook_key: str = ""
    assets: Optional[List[str]] = None


def _policy_view(service: SignalService, consumer: Consumer) -> Dict[str, Any]:
    policy = service.policies.effective_policy(consumer.tier, consumer)
    return {
        "max_age_seconds": int(policy.max_age / timedelta(seconds=1)),
        "min_resolution": policy.min_resolution.value,
        "realtime_allowed": policy.realtime_allowed,
        "alerts_allowed": policy.alerts_allowed,
        "asset_scope": policy.asset_scope.value,
        "default_asset_only": policy.default_asset_only,
        "history_limit": policy.history_limit,
    }


def create_app(service: Optional[SignalService] = None) -> FastAPI:
    """Build the API; a prepared service may be injected (tests, embedding)."""
    app_state: Dict[str, Any] = {
        "instance_id": str(uuid.uuid4())[:8],
        "started_at": None,
        "requests": 0,
    }

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan — startup and shutdown."""
        setup_logging()
        settings = get_settings()
        app_state["started_at"] = utc_timestamp()
        app.state.service = service or SignalService(settings)

        logger.info("tier_signal_starting", version=settings.version,
                    instance=app_state["instance_id"])
        await app.state.service.start()

        yield

        logger.info("tier_signal_shutting_down")
        await app.state.service.shutdown()

    app = FastAPI(
        title="TIER SIGNAL",
        description="Tier-gated market indicator signals",
        version=get_settings().version,
        lifespan=lifespan,
    )

    def get_service(request: Request) -> SignalService:
        return request.app.state.service

    async def get_consumer(
        request: Request,
        x_consumer_id: Optional[str] = Header(default=None),
    ) -> Consumer:
        app_state["requests"] += 1
        return await get_service(request).resolver.resolve(x_consumer_id)

    # ─── Health & Metrics ───────────────────────────────────────────

    @app.get("/healthz", tags=["System"])
    async def health_check():
        """Fast health check endpoint for load balancers and monitoring."""
        return JSONResponse(
            status_code=200,
            content={
                "status": "healthy",
                "instance": app_state["instance_id"],
                "uptime_since": app_state["started_at"],
                "timestamp": utc_timestamp(),
            },
        )

    @app.get("/metrics", tags=["System"])
    async def metrics(service: SignalService = Depends(get_service)):
        settings = get_settings()
        return {
            "app": {
                "name": settings.app_name,
                "version": settings.version,
                "instance_id": app_state["instance_id"],
                "started_at": app_state["started_at"],
            },
            "requests": app_state["requests"],
            **service.stats,
            "assets": service.runner.assets,
            "timestamp": utc_timestamp(),
        }

    # ─── Consumer Endpoints ─────────────────────────────────────────

    @app.get("/api/v1/signals/{asset}/{timeframe}", tags=["Signals"])
    async def read_signals(
        asset: str,
        timeframe: str,
        kind: RecordKind = Query(default=RecordKind.SIGNAL),
        consumer: Consumer = Depends(get_consumer),
        service: SignalService = Depends(get_service),
    ):
        """Records for one asset and timeframe, as visible to the caller's tier."""
        try:
            tf = Timeframe.parse(timeframe)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        record_type = record_type_for(kind, asset)
        records = await service.reader.read(consumer, record_type, tf, utc_now())
        return {
            "consumer_id": consumer.consumer_id,
            "tier": consumer.tier.value,
            "asset": asset_slug(asset),
            "timeframe": tf.value,
            "record_type": record_type,
            "count": len(records),
            "records": [record_to_dict(r) for r in records],
        }

    @app.get("/api/v1/tier", tags=["Entitlements"])
    async def read_tier(
        consumer: Consumer = Depends(get_consumer),
        service: SignalService = Depends(get_service),
    ):
        return {
            "consumer_id": consumer.consumer_id,
            "tier": consumer.tier.value,
            "stake_weight": consumer.stake_weight,
            "subscribed_assets": consumer.subscribed_assets,
            "policy": _policy_view(service, consumer),
        }

    @app.post("/api/v1/subscribe", tags=["Entitlements"])
    async def subscribe(
        body: SubscribeRequest,
        x_consumer_id: Optional[str] = Header(default=None),
        consumer: Consumer = Depends(get_consumer),
        service: SignalService = Depends(get_service),
    ):
        """Register a webhook that receives the caller's gated records."""
        if not x_consumer_id:
            raise HTTPException(status_code=400, detail="X-Consumer-Id header is required")
        subscribed = await service.subscribe(consumer, body.webhook_url, body.webhook_key,
                                             body.assets)
        return {
            "consumer_id": subscribed.consumer_id,
            "tier": subscribed.tier.value,
            "webhook_url": subscribed.webhook_url,
            "subscribed_assets": subscribed.subscribed_assets,
        }

    return app


app = create_app()

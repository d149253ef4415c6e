"""
Prometheus metrics endpoint.

GET /metrics
Returns Prometheus-formatted metrics for scraping. Point-in-time job
gauges are refreshed from the running ``JobManager`` before each scrape.
"""
from fastapi import APIRouter, Request, Response
from fastapi.responses import PlainTextResponse

from ticketchat.core.logging import get_logger
from ticketchat.core.metrics import get_metrics, get_metrics_content_type, set_job_dispatches_in_flight

logger = get_logger(__name__)
router = APIRouter()


def _refresh_job_gauges(request: Request) -> None:
    job_manager = getattr(request.app.state, "job_manager", None)
    # Unconfigured database: no job manager, nothing in flight
    set_job_dispatches_in_flight(job_manager.dispatches_in_flight if job_manager is not None else 0)


@router.get("", response_class=PlainTextResponse)
async def metrics(request: Request):
    try:
        _refresh_job_gauges(request)
        return Response(content=get_metrics(), media_type=get_metrics_content_type())
    except Exception as e:
        logger.error(
            "metrics_endpoint_error",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return Response(
            content=b"# Error collecting metrics\n",
            media_type=get_metrics_content_type(),
        )

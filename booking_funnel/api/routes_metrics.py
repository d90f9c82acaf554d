from fastapi import APIRouter, Depends, HTTPException, Request, Response

from booking_funnel.api.auth import require_metrics_token

router = APIRouter()


@router.get("/metrics", dependencies=[Depends(require_metrics_token)])
async def metrics_endpoint(request: Request) -> Response:
    metrics_client = getattr(request.app.state, "metrics", None)
    if metrics_client is None or not metrics_client.enabled:
        raise HTTPException(status_code=404, detail="Metrics disabled")
    payload, content_type = metrics_client.render()
    return Response(content=payload, media_type=content_type)

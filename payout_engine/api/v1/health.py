from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    rid = getattr(request.state, "request_id", None)
    rail = getattr(request.app.state, "rail", None)
    return {
        "status": "ok",
        "request_id": rid,
        "payouts_enabled": bool(rail and rail.configured),
    }

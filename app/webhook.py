import redis, json, time, asyncio
from fastapi import APIRouter, Depends, HTTPException, Request

from config import ALLOWED_DEVICES, REDIS_URL, TELEMETRY_STREAM
from crud import record_to_dict
from errors import AlreadyActive, NoActiveSession
from logging_config import get_logger

# Redis connection (binary mode)
r = redis.from_url(REDIS_URL, decode_responses=False)

router = APIRouter()
logger = get_logger("webhook", "webhook.log")


def get_manager(request: Request):
    return request.app.state.manager


def get_store(request: Request):
    return request.app.state.store


def _allowed(device_id) -> bool:
    return not ALLOWED_DEVICES or str(device_id) in ALLOWED_DEVICES


# ---------------------------------------------------
#                DEVICE SAMPLE PUSH
# ---------------------------------------------------
@router.post("/telemetry")
async def telemetry_hook(payload: dict):

    device_id = payload.get("deviceId")
    if device_id is None:
        raise HTTPException(status_code=400, detail="missing deviceId")

    # devices push either {"deviceId", "sample": {...}} or the flat reading
    sample = payload.get("sample")
    if sample is None:
        sample = {k: v for k, v in payload.items() if k != "deviceId"}
    if not isinstance(sample, dict) or not sample:
        raise HTTPException(status_code=400, detail="no sample")

    if not _allowed(device_id):
        logger.info(f"Ignored device {device_id} (not in ALLOWED_DEVICES)")
        return {"ok": False, "reason": "ignored"}

    json_str = json.dumps({"deviceId": str(device_id), "sample": sample}, ensure_ascii=False)

    # Push to Redis inside executor (non-blocking)
    await asyncio.get_running_loop().run_in_executor(
        None,
        r.xadd,
        TELEMETRY_STREAM,
        {"ts": time.time(), "data": json_str},
    )

    logger.info(f"Sample queued for device {device_id}")
    return {"ok": True}


# ---------------------------------------------------
#                TRIP SESSIONS
# ---------------------------------------------------
@router.post("/trips/{device_id}/start")
async def start_trip(device_id: str, manager=Depends(get_manager)):
    try:
        session_id = await manager.start(device_id)
    except AlreadyActive as e:
        raise HTTPException(status_code=409, detail={"error": "AlreadyActive", "sessionId": e.session_id})
    return {"ok": True, "sessionId": session_id}


@router.post("/trips/{device_id}/close")
async def close_trip(device_id: str, payload: dict = None, manager=Depends(get_manager)):
    payload = payload or {}
    try:
        result = await manager.close(
            device_id,
            trip_name=payload.get("tripName"),
            notes=payload.get("notes"),
        )
    except NoActiveSession:
        raise HTTPException(status_code=404, detail="NoActiveSession")

    return {
        "ok": True,
        "persisted": result.persisted,
        "persistencePending": not result.persisted,
        "trip": record_to_dict(result.record),
    }


# ---------------------------------------------------
#                LIVE STATE (read-only)
# ---------------------------------------------------
@router.get("/live/{device_id}")
async def live_state(device_id: str, manager=Depends(get_manager)):
    return manager.get_live_state(device_id).to_dict()


# ---------------------------------------------------
#                STORED TRIPS
# ---------------------------------------------------
@router.get("/trips/{device_id}")
async def list_trips(device_id: str, limit: int = 50, store=Depends(get_store)):
    records = await store.list_trips(device_id, limit=limit)
    return [record_to_dict(rec, with_path=False) for rec in records]


@router.get("/trips/{device_id}/{trip_id}")
async def get_trip(device_id: str, trip_id: str, store=Depends(get_store)):
    rec = await store.get_trip(device_id, trip_id)
    if not rec:
        raise HTTPException(status_code=404, detail="Trip not found")
    return record_to_dict(rec)


@router.delete("/trips/{device_id}/{trip_id}")
async def delete_trip(device_id: str, trip_id: str, store=Depends(get_store)):
    if not await store.delete_trip(device_id, trip_id):
        raise HTTPException(status_code=404, detail="Trip not found")
    logger.info(f"Trip {trip_id} deleted for device {device_id}")
    return {"ok": True}

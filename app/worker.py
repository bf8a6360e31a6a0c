# worker.py
import json
import asyncio

import redis

from config import (AUTO_START_ON_SAMPLE, REDIS_URL, SWEEP_INTERVAL_SEC, TELEMETRY_CONSUMER,
                    TELEMETRY_GROUP, TELEMETRY_STREAM)
from errors import NoActiveSession
from logging_config import get_logger
from trip_types import Rejected
from validator import validate

# ------------ Variable Declaration -----------
logger = get_logger("worker", "worker.log")

r = redis.from_url(REDIS_URL, decode_responses=False)

STREAM = TELEMETRY_STREAM
GROUP = TELEMETRY_GROUP
CONSUMER = TELEMETRY_CONSUMER


# ---------- Ensure Consumer Group ----------
async def init_group(client=r):
    try:
        # Start reading only NEW messages from now → id="$", create stream if missing
        client.xgroup_create(STREAM, GROUP, id="$", mkstream=True)
        logger.info("Consumer group created.")
    except redis.exceptions.ResponseError as e:
        if "BUSYGROUP" in str(e):
            logger.info("Consumer group already exists.")
        else:
            raise


def decode_message(fields: dict):
    """
    Stream entries carry data = {"deviceId": ..., "sample": {...}}.
    Raises ValueError for anything else.
    """
    raw = fields.get(b"data", fields.get("data"))
    if raw is None:
        raise ValueError("stream entry has no data field")

    payload = json.loads(raw)
    if not isinstance(payload, dict):
        raise ValueError("payload is not an object")

    device_id = payload.get("deviceId")
    sample = payload.get("sample")
    if device_id is None or not isinstance(sample, dict):
        raise ValueError("payload needs deviceId and sample")
    return str(device_id), sample


# ---------- Dispatch one sample into the engine ----------
async def dispatch_sample(manager, device_id, sample: dict, auto_start: bool = AUTO_START_ON_SAMPLE) -> bool:
    """
    Returns False when the device has no open session and either auto_start
    is off or the sample would be rejected anyway.
    """
    try:
        await manager.ingest(device_id, sample)
        return True
    except NoActiveSession:
        if not auto_start:
            logger.info(f"No open trip for device {device_id}; sample ignored")
            return False

    # only a valid sample opens a trip; fix-less heartbeats must not
    checked = validate(sample)
    if isinstance(checked, Rejected):
        logger.info(f"No open trip for device {device_id}; {checked.reason} not auto-started: {checked.detail}")
        return False

    session_id = await manager.ensure_session(device_id)
    logger.info(f"Auto-started session {session_id} for device {device_id}")
    try:
        await manager.ingest(device_id, sample)
    except NoActiveSession:
        # closed again between start and ingest
        logger.info(f"Session for device {device_id} closed before first sample applied")
        return False
    return True


def _ack(client, _id):
    try:
        client.xack(STREAM, GROUP, _id)
        client.xdel(STREAM, _id)
    except Exception as rexc:
        logger.exception(f"Failed to ack/xdel message {_id}: {rexc}")


async def handle_message(manager, client, _id, fields, auto_start: bool = AUTO_START_ON_SAMPLE) -> None:
    try:
        device_id, sample = decode_message(fields)
    except (ValueError, UnicodeDecodeError) as je:
        # malformed message — ack & delete to avoid poison-pill
        logger.warning(f"Dropping malformed record {_id}: {je}")
        _ack(client, _id)
        return

    try:
        await dispatch_sample(manager, device_id, sample, auto_start=auto_start)
    except Exception as e:
        # one device's failure must not stall the stream for the others
        logger.exception(f"Error processing record {_id} for device {device_id}: {e}")
    _ack(client, _id)


# ---------- Stream consumer ----------
async def consume(manager, client=r):
    logger.info("Worker starting, initializing consumer group...")
    await init_group(client)

    logger.info("Worker listening for telemetry stream messages...")
    loop = asyncio.get_running_loop()

    while True:
        try:
            # Blocking read via executor (call will block the threadpool, not the event loop)
            msgs = await loop.run_in_executor(
                None,
                client.xreadgroup,
                GROUP,
                CONSUMER,
                {STREAM: ">"},
                100,
                5000  # block 5 seconds
            )

            # messages for one device stay in stream order; handled one at a time
            for _, records in msgs or []:
                for _id, fields in records:
                    await handle_message(manager, client, _id, fields)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Worker loop encountered an error: {e}")

        # small sleep to avoid tight loop in case of unexpected fast failures
        await asyncio.sleep(0.1)


# ---------- Periodic sweep: idle sessions, pending trips, vehicle config ----------
async def sweep_once(manager, vehicles=None) -> dict:
    closed = await manager.auto_close()
    flushed = await manager.flush_pending()
    if vehicles is not None:
        await vehicles.refresh()

    if closed or flushed:
        logger.info(
            f"[sweep] auto_closed={len(closed)} flushed={flushed} "
            f"pending={manager.pending_count()}"
        )
    return {"auto_closed": len(closed), "flushed": flushed, "pending": manager.pending_count()}


async def sweeper(manager, vehicles=None, interval: float = SWEEP_INTERVAL_SEC):
    logger.info(f"Sweeper running every {interval}s")
    while True:
        try:
            await sweep_once(manager, vehicles)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"[sweep] failed: {e}")
        await asyncio.sleep(interval)

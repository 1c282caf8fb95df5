import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import List, Optional
from urllib.parse import quote

import uvicorn
from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse

from webshare.config import Config
from webshare.logger_config import setup_logger
from webshare.monitor import Monitor
from webshare.services.errors import ItemNotFoundError, StorageIOError, UploadValidationError
from webshare.services.store import ContentStore

logger = setup_logger()

# Failures of the maintenance loop tolerated within an hour before alerting
MAINTENANCE_FAILURE_THRESHOLD = 3


def format_duration(delta: timedelta) -> str:
    if delta == timedelta.max:
        return "forever"
    remaining = int(delta.total_seconds())
    days, remaining = divmod(remaining, 86400)
    hours, remaining = divmod(remaining, 3600)
    minutes, seconds = divmod(remaining, 60)
    parts = [
        f"{value} {unit}{'' if value == 1 else 's'}"
        for value, unit in ((days, "day"), (hours, "hour"), (minutes, "minute"), (seconds, "second"))
        if value
    ]
    return " ".join(parts) or "0 seconds"


async def maintenance_pass(store: ContentStore, monitor: Monitor, remove_transient: bool = False):
    """Expire old items, then request a quota pass. Never raises."""
    try:
        deleted = await store.sweep_once(remove_transient=remove_transient)
        if deleted:
            logger.info(f"Retention sweep removed {len(deleted)} items")
        store.enforce_quota_async()
        monitor.pass_()
    except Exception as e:
        logger.error(f"Maintenance pass failed: {e}", exc_info=True)
        monitor.fail()


async def maintenance_loop(store: ContentStore, monitor: Monitor):
    while True:
        await asyncio.sleep(store.config.sweep_interval_seconds)
        await maintenance_pass(store, monitor)


def create_app(config: Optional[Config] = None) -> FastAPI:
    config = config or Config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = ContentStore(config)
        await store.initialize()
        app.state.store = store
        app.state.monitor = Monitor("maintenance", MAINTENANCE_FAILURE_THRESHOLD)
        # Startup pass also clears uploads interrupted by the previous run
        await maintenance_pass(store, app.state.monitor, remove_transient=True)
        tasks: List[asyncio.Task] = [
            asyncio.create_task(store.eviction_worker.run()),
            asyncio.create_task(maintenance_loop(store, app.state.monitor)),
        ]
        yield
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    app = FastAPI(title="webshare", lifespan=lifespan)
    app.state.config = config

    @app.get("/")
    async def home():
        return {
            "name": "webshare",
            "public_url": config.public_url,
            "max_bytes_per_file": config.max_bytes_per_file,
            "max_bytes_per_file_human": config.max_bytes_per_file_human,
            "max_bytes_total": config.max_bytes_total,
            "minutes_per_gigabyte": config.minutes_per_gigabyte,
        }

    @app.post("/", status_code=201)
    async def upload(request: Request, file: UploadFile = File(...)):
        store: ContentStore = request.app.state.store
        logger.info(f"Receiving upload {file.filename!r} ({file.size} bytes)")
        try:
            item = await store.ingest(file.filename or "", file, file.size)
        except UploadValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except StorageIOError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {
            "id": f"{item.id}/{item.original_name}",
            "link": f"{config.public_url}{item.public_link}",
        }

    @app.get("/info/{item_id}")
    async def info(item_id: str, request: Request):
        store: ContentStore = request.app.state.store
        try:
            item = store.info(item_id)
        except ItemNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        ttl = store.time_to_deletion(item)
        data = item.model_dump(mode="json")
        data["time_to_deletion_seconds"] = ttl.total_seconds()
        data["time_to_deletion_human"] = format_duration(ttl)
        return data

    @app.get("/exists/{item_id}/{name}")
    async def exists(item_id: str, name: str, request: Request):
        store: ContentStore = request.app.state.store
        found = store.exists(item_id, name)
        logger.debug(f"Checking existence of {item_id}/{name}: {found}")
        return {"exists": "yes" if found else "no", "id": item_id, "name": name}

    @app.get("/delete/{item_id}")
    @app.delete("/{item_id}")
    async def delete(item_id: str, request: Request):
        store: ContentStore = request.app.state.store
        try:
            removed = await store.delete(item_id)
        except StorageIOError as e:
            raise HTTPException(status_code=500, detail=str(e))
        # Always succeeds, even if the item was already gone
        return {"success": True, "removed": removed, "message": f"Removed {item_id}."}

    @app.get("/1/{item_id}/{name}")
    async def raw_data(item_id: str, name: str, request: Request):
        store: ContentStore = request.app.state.store
        try:
            item, stream = await store.get(item_id, name, decompress=False)
        except ItemNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return StreamingResponse(stream, media_type=item.content_type, headers={"Content-Encoding": "gzip"})

    @app.get("/{item_id}/{name}")
    async def show_data(item_id: str, name: str, request: Request):
        store: ContentStore = request.app.state.store
        try:
            item, stream = await store.get(item_id, name, decompress=True)
        except ItemNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        headers = {"Content-Disposition": f"inline; filename*=UTF-8''{quote(item.original_name)}"}
        return StreamingResponse(stream, media_type=item.content_type, headers=headers)

    @app.exception_handler(StorageIOError)
    async def storage_error_handler(request: Request, exc: StorageIOError):
        logger.error(f"Storage error on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    return app


app = create_app()


def main(argv: Optional[List[str]] = None):
    config = Config.from_args(argv)
    setup_logger(config.debug)
    logger.info("Starting webshare...")
    logger.info(f"Data directory: {config.root}")
    logger.info(f"Maximum file size: {config.max_bytes_per_file_human}")
    logger.info(f"Retention rate: {config.minutes_per_gigabyte} minutes per gigabyte")
    uvicorn.run(create_app(config), host="0.0.0.0", port=config.port)


if __name__ == "__main__":
    main()

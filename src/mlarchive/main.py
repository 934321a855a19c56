import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from mlarchive.config import get_settings
from mlarchive.handlers.archive_handler import (
    InvalidMessagePayload,
    handle_append_message,
    handle_list_conversations,
    handle_parse_archive,
)
from mlarchive.services.archive_store import ArchiveStore
from mlarchive.services.logging_config import configure_logging
from mlarchive.services.mbox_codec import CodecError
from mlarchive.services.message_parser import MalformedMessageError

settings = get_settings()
configure_logging(settings.log_level, json_format=settings.log_json)
logger = logging.getLogger(__name__)

store = ArchiveStore(settings.archive_file, settings.archive_index_file)

app = FastAPI(title="Mailing List Archive", version="0.1.0")


@app.on_event("startup")
def startup() -> None:
    store.init_db()
    logger.info("Application startup complete", extra={"event": "startup_complete"})


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok", "env": settings.app_env}


@app.post("/archive/parse")
async def parse_archive_text(request: Request) -> JSONResponse:
    raw = await request.body()
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="archive must be UTF-8 text") from exc

    try:
        result = handle_parse_archive(text, resolve_out_of_order=settings.resolve_out_of_order)
    except (MalformedMessageError, CodecError) as exc:
        logger.warning(
            "Rejected unparseable archive",
            extra={"event": "archive_parse_rejected", "error": repr(exc)},
        )
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    logger.info(
        "Parsed archive",
        extra={
            "event": "archive_parsed",
            "conversations": len(result["conversations"]),
            "discarded": len(result["discarded"]),
        },
    )
    return JSONResponse(result)


@app.post("/archive/messages")
async def append_message(request: Request) -> JSONResponse:
    try:
        payload = await request.json()
    except Exception as exc:
        logger.warning("Invalid message payload", extra={"event": "archive_message_invalid_json"})
        raise HTTPException(status_code=400, detail="invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="message payload must be an object")

    try:
        result = handle_append_message(payload, store)
    except InvalidMessagePayload as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JSONResponse(result)


@app.get("/archive/conversations")
def list_conversations() -> JSONResponse:
    try:
        result = handle_list_conversations(store, resolve_out_of_order=settings.resolve_out_of_order)
    except (MalformedMessageError, CodecError) as exc:
        logger.error(
            "Local archive could not be parsed",
            extra={"event": "archive_local_parse_failed", "error": repr(exc)},
        )
        raise HTTPException(status_code=500, detail="local archive is corrupt") from exc
    return JSONResponse(result)

import logging
import os
import sys
from dataclasses import asdict
from typing import Optional
from urllib.parse import unquote_to_bytes

import python_multipart
import uvicorn
from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse
from fastapi.templating import Jinja2Templates
from python_multipart.exceptions import FormParserError
from starlette.exceptions import HTTPException as StarletteHTTPException

from rbin.config import Settings, load_settings
from rbin.errors import (
    GenerationExhausted,
    InvalidIdentifier,
    PasteNotFound,
    StartupFailure,
    StorageIOFailure,
)
from rbin.storage import PasteStore

logger = logging.getLogger(__name__)

FIELD_NAME = "rbin"
TEXT_PLAIN = "text/plain; charset=utf-8"

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
templates = Jinja2Templates(directory=os.path.join(BASE_DIR, "templates"))


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application around a PasteStore rooted at settings.paste_dir.

    Raises StartupFailure if the paste directory can't be created.
    """
    settings = settings or load_settings()
    store = PasteStore(settings.paste_dir)
    logger.info("Using paste directory: %s", store.root)

    app = FastAPI(title="rbin", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.settings = settings
    app.state.store = store

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request, exc):
        return PlainTextResponse(
            str(exc.detail), status_code=exc.status_code, headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(InvalidIdentifier)
    async def invalid_id_handler(request, exc):
        logger.warning("Invalid ID format received: %r", exc.paste_id)
        return PlainTextResponse("Invalid paste ID format.", status_code=400)

    @app.exception_handler(PasteNotFound)
    async def not_found_handler(request, exc):
        return PlainTextResponse(str(exc), status_code=404)

    @app.exception_handler(GenerationExhausted)
    async def exhausted_handler(request, exc):
        return PlainTextResponse("Failed to save paste: no free paste ID available.", status_code=500)

    @app.exception_handler(StorageIOFailure)
    async def storage_failure_handler(request, exc):
        return PlainTextResponse("Storage error, please try again later.", status_code=500)

    @app.get("/", response_class=PlainTextResponse)
    def index(request: Request):
        logger.debug("Serving root plain text info.")
        return templates.TemplateResponse(
            request,
            "usage.txt",
            {
                "base_url": base_url(request),
                "max_body_size": request.app.state.settings.max_body_size,
                "defaults": asdict(Settings()),
            },
            media_type=TEXT_PLAIN,
        )

    @app.post("/", response_class=PlainTextResponse)
    async def create_paste(request: Request):
        logger.debug("Received paste submission request.")
        max_size = request.app.state.settings.max_body_size
        content = await read_paste_field(request, max_size)
        paste_id = await run_in_threadpool(request.app.state.store.create, content)
        result_url = f"{base_url(request)}/{paste_id}"
        logger.info("Paste created successfully: %s", result_url)
        return PlainTextResponse(result_url)

    @app.get("/{paste_id}")
    def read_paste(request: Request, paste_id: str):
        logger.debug("Received request to retrieve paste ID: %s", paste_id)
        content = request.app.state.store.read(paste_id)
        return PlainTextResponse(content, media_type=TEXT_PLAIN)

    return app


async def read_paste_field(request: Request, max_size: int) -> bytes:
    """Return the raw bytes of the ``rbin`` field, plain value or file part.

    The form is parsed straight off the request stream so text fields keep
    their exact bytes. Bodies over ``max_size`` are rejected with 413 whether
    or not the client sent a Content-Length.
    """
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_size:
        raise too_large(declared, max_size)

    content_type = request.headers.get("content-type")
    if not content_type:
        raise missing_field()

    field_name = FIELD_NAME.encode()
    urlencoded = content_type.lower().startswith("application/x-www-form-urlencoded")
    found = []
    files = []

    def on_field(field):
        if field.field_name == field_name and not found:
            value = field.value or b""
            if urlencoded:
                value = unquote_to_bytes(value.replace(b"+", b" "))
            found.append(value)

    def on_file(file):
        files.append(file)
        if file.field_name == field_name and not found:
            file.file_object.seek(0)
            found.append(file.file_object.read())

    try:
        parser = python_multipart.create_form_parser(
            {"Content-Type": content_type.encode("latin-1")},
            on_field,
            on_file,
            config={"MAX_MEMORY_FILE_SIZE": max_size},
        )
        received = 0
        async for chunk in request.stream():
            received += len(chunk)
            if received > max_size:
                raise too_large(f"{received}+", max_size)
            parser.write(chunk)
        parser.finalize()
    except FormParserError as e:
        logger.error("Error reading form data: %s", e)
        raise StarletteHTTPException(status_code=400, detail=f"Error processing form data: {e}")
    finally:
        for file in files:
            file.close()

    if not found:
        raise missing_field()
    content = found[0]
    if not content:
        logger.warning("Received empty '%s' field.", FIELD_NAME)
        raise StarletteHTTPException(status_code=400, detail="Paste content cannot be empty")
    return content


def too_large(size, max_size: int) -> StarletteHTTPException:
    logger.warning("Rejected upload of %s bytes (limit %d)", size, max_size)
    return StarletteHTTPException(status_code=413, detail=f"Paste exceeds {max_size} bytes")


def missing_field() -> StarletteHTTPException:
    logger.warning("Missing '%s' field in submission.", FIELD_NAME)
    return StarletteHTTPException(status_code=400, detail=f"Missing '{FIELD_NAME}' form field")


def base_url(request: Request) -> str:
    host = request.headers.get("host", "localhost")
    scheme = request.headers.get("x-forwarded-proto", "http")
    return f"{scheme}://{host}"


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def main() -> None:
    settings = load_settings()
    configure_logging(settings)
    logger.info("Starting rbin...")
    logger.info("Request log level set to: %s", settings.request_log_level)

    try:
        app = create_app(settings)
    except StartupFailure as e:
        logger.error("%s", e)
        sys.exit(1)

    logger.info("rbin configured. Listening on %s:%d", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.request_log_level)


if __name__ == "__main__":
    main()

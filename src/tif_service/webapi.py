import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import FileResponse, JSONResponse

from tif_service.conversion import (
    ConnectionGateway,
    ConversionError,
    ConverterGateway,
    ParamsInvalid,
    RecordGateway,
    StoreError,
    TifService,
)
from tif_service.conversion.adapters import MongoConnection, MongoRecordStore, PillowConverter
from tif_service.conversion.params import validate_convert, validate_id

logger = logging.getLogger(__name__)

# Global configuration defaults
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3001"))
MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017/get-tif")
MONGODB_DATABASE = os.getenv("MONGODB_DATABASE", "get-tif")
MONGODB_COLLECTION = os.getenv("MONGODB_COLLECTION", "tifs")
MONGODB_TIMEOUT_MS = int(os.getenv("MONGODB_TIMEOUT_MS", "5000"))
CACHE_DIR = os.getenv("CACHE_DIR", ".cache")


def _service(request: Request) -> TifService:
    return request.app.state.service


async def _params_invalid(request: Request, exc: ParamsInvalid) -> JSONResponse:
    # single failure -> {message}; several -> {messages: [{message}, ...]}
    if len(exc.messages) > 1:
        body: dict[str, object] = {"messages": [{"message": m} for m in exc.messages]}
    else:
        body = {"message": exc.messages[0]}
    return JSONResponse(status_code=422, content=body)


async def _conversion_failed(request: Request, exc: ConversionError) -> JSONResponse:
    logger.error("conversion failed for %s: %s", request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"message": "conversion failed"})


async def _store_failed(request: Request, exc: StoreError) -> JSONResponse:
    logger.error("store error for %s: %s", request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"message": "store unavailable"})


def create_app(
    connection: ConnectionGateway | None = None,
    records: RecordGateway | None = None,
    converter: ConverterGateway | None = None,
    *,
    cache_dir: str = CACHE_DIR,
) -> FastAPI:
    """Build the application around the given gateways.

    Missing gateways default to MongoDB (configured from the environment) and
    Pillow. The store is connected during startup, before uvicorn listens, and
    disconnected during shutdown.
    """
    if connection is None:
        mongo = MongoConnection(MONGODB_URI, database=MONGODB_DATABASE, timeout_ms=MONGODB_TIMEOUT_MS)
        connection = mongo
        if records is None:
            records = MongoRecordStore(mongo, MONGODB_COLLECTION)
    if records is None:
        raise ValueError("a record gateway is required with a custom connection")
    service = TifService(records, converter or PillowConverter(), cache_dir=cache_dir)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            await asyncio.to_thread(connection.connect)
        except StoreError as e:
            logger.error("startup aborted: %s", e)
            raise
        yield
        await asyncio.to_thread(connection.disconnect)

    app = FastAPI(
        title="TIF Image Service",
        version=os.getenv("TIF_SERVICE_VERSION", "0.1.0"),
        description=(
            "Serves source TIFF images by record id, converting them to JPEG "
            "or PNG on first request and caching the result."
        ),
        lifespan=lifespan,
    )
    app.state.connection = connection
    app.state.service = service
    app.add_exception_handler(ParamsInvalid, _params_invalid)
    app.add_exception_handler(ConversionError, _conversion_failed)
    app.add_exception_handler(StoreError, _store_failed)

    @app.get("/health")
    def health(request: Request) -> dict[str, str]:
        """Basic health check endpoint."""
        return {"status": "ok", "store": request.app.state.connection.ready_state.name}

    @app.get("/{id}/{type}", response_model=None)
    async def get_converted(id: str, type: str, request: Request) -> Response:
        """Download the record's image converted to jpg or png."""
        params = validate_convert(id, type)
        service = _service(request)
        record = await service.find_record(params.id)
        if record is None:
            return Response(status_code=status.HTTP_404_NOT_FOUND)
        path = await service.ensure_cached(record, params.type)
        return FileResponse(path, filename=f"{params.id}.{params.type}")

    @app.get("/{id}", response_model=None)
    async def get_original(id: str, request: Request) -> Response:
        """Download the record's untouched source file."""
        record_id = validate_id(id)
        service = _service(request)
        record = await service.find_record(record_id)
        if record is None:
            return Response(status_code=status.HTTP_404_NOT_FOUND)
        path = await service.original_path(record)
        if path is None:
            logger.warning("source file missing for %s", record_id)
            return Response(status_code=status.HTTP_404_NOT_FOUND)
        return FileResponse(path, filename=f"{record_id}.tif")

    return app


app = create_app()


def run() -> None:
    """Run the service with uvicorn.

    Exposes the app at host:port (default 0.0.0.0:3001). Set PORT env var to override.
    """
    import sys

    import uvicorn

    from tif_service.lifecycle import ShutdownCoordinator, TifServer, serve
    from tif_service.log_config import configure_logging

    configure_logging()
    coordinator = ShutdownCoordinator(app.state.connection)
    server = TifServer(uvicorn.Config(app, host=HOST, port=PORT), coordinator)
    sys.exit(asyncio.run(serve(server)))


if __name__ == "__main__":
    run()

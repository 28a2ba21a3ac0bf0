import logging
from contextlib import asynccontextmanager
from urllib.parse import quote

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse, Response
from starlette.datastructures import Headers, UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from course_portal.auth import CredentialGate
from course_portal.config import Settings, get_settings
from course_portal.errors import InvalidInput, PayloadTooLarge, PortalError
from course_portal.models import (
    DeleteByNameRequest,
    DeleteRequest,
    InlineUploadRequest,
    LoginRequest,
    LoginResponse,
    SuccessResponse,
    VerifyRequest,
)
from course_portal.repository import InMemoryMetadataStore, JsonFileMetadataStore, MetadataStore
from course_portal.service import FileService
from course_portal.storage import (
    ContentStore,
    DiskContentStore,
    InlineContentStore,
    UploadPayload,
    decode_payload,
)

logger = logging.getLogger(__name__)


def build_stores(settings: Settings) -> tuple[MetadataStore, ContentStore]:
    if settings.storage_backend == "memory":
        return InMemoryMetadataStore(), InlineContentStore()
    return (
        JsonFileMetadataStore(settings.metadata_path),
        DiskContentStore(settings.storage_dir, max_size_bytes=settings.max_upload_size_bytes),
    )


def content_disposition(filename: str) -> str:
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


async def read_bounded(upload: UploadFile, max_size_bytes: int) -> bytes:
    chunks = []
    total = 0
    while True:
        chunk = await upload.read(1024 * 1024)
        if not chunk:
            break
        total += len(chunk)
        if total > max_size_bytes:
            raise PayloadTooLarge(f"File exceeds max upload size of {max_size_bytes} bytes")
        chunks.append(chunk)
    return b"".join(chunks)


class RequestBodyLimit:
    """Rejects request bodies over ``max_body_bytes``, declared or streamed."""

    def __init__(self, app, max_body_bytes: int):
        self.app = app
        self.max_body_bytes = max_body_bytes

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        length = Headers(scope=scope).get("content-length", "")
        if length.isascii() and length.isdigit() and int(length) > self.max_body_bytes:
            response = JSONResponse(
                status_code=413, content={"success": False, "message": "Request body too large"}
            )
            await response(scope, receive, send)
            return

        received = 0

        async def limited_receive():
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_body_bytes:
                    raise PayloadTooLarge("Request body too large")
            return message

        await self.app(scope, limited_receive, send)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    metadata, content = build_stores(settings)
    gate = CredentialGate(settings.ta_password)
    service = FileService(gate, metadata, content)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        metadata.init()
        content.init()
        logger.info("Started %s with %s storage", settings.app_name, settings.storage_backend)
        yield
        metadata.close()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(RequestBodyLimit, max_body_bytes=settings.max_request_body_bytes)

    def error_response(status_code: int, message: str) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"success": False, "message": message})

    @app.exception_handler(PortalError)
    async def portal_exception_handler(_: Request, exc: PortalError):
        return error_response(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(_: Request, exc: RequestValidationError):
        missing_fields = [
            ".".join(str(item) for item in error["loc"] if item != "body")
            for error in exc.errors()
            if error.get("type") == "missing"
        ]
        if missing_fields:
            message = f"missing parameters: {', '.join(missing_fields)}"
        else:
            message = "invalid request parameters"
        return error_response(400, message)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_: Request, exc: StarletteHTTPException):
        message = str(exc.detail) if exc.detail else "request failed"
        return error_response(exc.status_code, message)

    @app.middleware("http")
    async def catch_unhandled(request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.exception("Unhandled error serving %s %s", request.method, request.url.path)
            return error_response(500, "Internal server error")

    @app.get("/")
    def root() -> dict:
        return {"status": "ok", "service": settings.app_name}

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "environment": settings.app_env, "storage": settings.storage_backend}

    @app.post("/api/login", response_model=LoginResponse)
    def login(payload: LoginRequest):
        issued = gate.login(payload.email, payload.password)
        return LoginResponse(token=issued.token, email=issued.email)

    @app.post("/api/verify")
    def verify(payload: VerifyRequest):
        if not payload.email or not payload.token:
            return JSONResponse(status_code=400, content={"success": False})
        if not gate.verify(payload.email, payload.token):
            return JSONResponse(status_code=401, content={"success": False})
        return {"success": True}

    @app.get("/api/files")
    def list_files() -> dict:
        snapshot = service.list_files()
        files = {
            category: [record.public_dict() for record in records]
            for category, records in snapshot.items()
        }
        return {"success": True, "files": files}

    async def read_multipart(request: Request) -> tuple[str | None, str | None, UploadPayload | None]:
        form = await request.form()
        email = form.get("email")
        category = form.get("category")
        upload = form.get("file")
        payload = None
        if isinstance(upload, UploadFile):
            limit = content.max_size_bytes or settings.max_request_body_bytes
            payload = UploadPayload(name=upload.filename or "", content=await read_bounded(upload, limit))
        return (
            email if isinstance(email, str) else None,
            category if isinstance(category, str) else None,
            payload,
        )

    async def read_inline(request: Request) -> tuple[str | None, str | None, UploadPayload | None]:
        try:
            body = InlineUploadRequest.model_validate(await request.json())
        except ValueError as exc:
            raise InvalidInput("invalid request body") from exc

        payload = None
        inline = body.file
        if inline is not None and inline.name and inline.data:
            try:
                payload = UploadPayload(name=inline.name, content=decode_payload(inline.data), encoded=inline.data)
            except ValueError:
                logger.warning("Upload of %s carried undecodable file data", inline.name)
        return body.email, body.category, payload

    @app.post("/api/upload")
    async def upload_file(request: Request):
        if request.headers.get("content-type", "").startswith("multipart/form-data"):
            email, category, payload = await read_multipart(request)
        else:
            email, category, payload = await read_inline(request)

        record = service.upload(email=email, category=category, payload=payload)
        return {"success": True, "message": "File uploaded successfully", "file": record.public_dict()}

    @app.delete("/api/files/{category}/{file_id}", response_model=SuccessResponse)
    def delete_file(category: str, file_id: str, payload: DeleteRequest | None = None):
        email = payload.email if payload else None
        service.delete(email=email, category=category, file_id=file_id)
        return SuccessResponse(message="File deleted successfully")

    @app.post("/api/delete", response_model=SuccessResponse)
    def delete_file_by_name(payload: DeleteByNameRequest):
        service.delete_by_name(email=payload.email, category=payload.category, name=payload.file_name)
        return SuccessResponse(message="File deleted successfully")

    @app.get("/api/file/{category}/{file_id}")
    def download_file(category: str, file_id: str):
        record, body = service.download(category, file_id)
        return Response(
            content=body,
            media_type=record.type.media_type,
            headers={"Content-Disposition": content_disposition(record.name)},
        )

    if isinstance(content, DiskContentStore):

        @app.get("/uploads/{filename}")
        def serve_upload(filename: str):
            return FileResponse(path=content.resolve(filename))

    return app


app = create_app()

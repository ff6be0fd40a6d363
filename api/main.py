import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.concurrency import run_in_threadpool

from ingest.config import LOCAL_UPLOAD_DIR, LOG_LEVEL, MAX_UPLOAD_BYTES, STORAGE_BACKEND
from ingest.errors import IngestError, ValidationError
from ingest.metadata import MetadataStore
from ingest.pipeline import IngestPipeline, list_recent
from ingest.storage import create_blob_store
from ingest.work_queue import create_work_queue

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Largest request body /upload accepts: the file limit plus room for the
# multipart boundaries and the width/height fields.
UPLOAD_BODY_LIMIT = MAX_UPLOAD_BYTES + 64 * 1024


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Backend clients are built once and shared by every request
    blob_store = create_blob_store()
    work_queue = create_work_queue()
    metadata_store = MetadataStore()
    metadata_store.create_schema()
    app.state.pipeline = IngestPipeline(blob_store, work_queue, metadata_store)
    logger.info("Ingest pipeline ready (storage=%s)", STORAGE_BACKEND)
    yield
    metadata_store.engine.dispose()


app = FastAPI(title="Image Resize Ingest API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Local backend: stored blobs are downloadable at the locator it hands out.
if STORAGE_BACKEND == "local":
    app.mount(
        "/uploads",
        StaticFiles(directory=str(LOCAL_UPLOAD_DIR), check_dir=False),
        name="uploads",
    )


@app.middleware("http")
async def limit_upload_body(request: Request, call_next):
    # Refuse declared oversized bodies before the multipart parser spools them
    if request.method == "POST" and request.url.path == "/upload":
        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > UPLOAD_BODY_LIMIT:
            logger.info("Rejected upload with Content-Length %s", declared)
            error = ValidationError(f"File too large (max {MAX_UPLOAD_BYTES} bytes).")
            return JSONResponse(status_code=error.status_code, content=error.to_dict())
    return await call_next(request)


templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))


def get_pipeline(request: Request) -> IngestPipeline:
    return request.app.state.pipeline


# ---------- Error mapping ----------

@app.exception_handler(IngestError)
async def ingest_error_handler(request: Request, exc: IngestError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # Malformed multipart bodies get the same 400 as any other bad input
    return JSONResponse(status_code=400, content=ValidationError().to_dict())


# ---------- API endpoints ----------

@app.post("/upload")
async def upload_image(
    image: Optional[UploadFile] = File(None),
    width: Optional[str] = Form(None),
    height: Optional[str] = Form(None),
    pipeline: IngestPipeline = Depends(get_pipeline),
):
    content = None
    filename = content_type = None
    if image is not None:
        # One byte over the limit is enough to reject the upload
        content = await image.read(pipeline.max_upload_bytes + 1)
        filename, content_type = image.filename, image.content_type

    result = await run_in_threadpool(pipeline.submit, content, filename, content_type, width, height)
    return {"message": "File uploaded and queued for processing.", "fileUrl": result.locator}


@app.get("/images")
async def read_images(pipeline: IngestPipeline = Depends(get_pipeline)):
    jobs = await run_in_threadpool(list_recent, pipeline.metadata_store)
    return [job.model_dump(mode="json") for job in jobs]


@app.get("/health")
def health():
    return {"status": "ok"}


# ---------- Web UI endpoints ----------

@app.get("/", response_class=HTMLResponse)
def home(request: Request):
    return templates.TemplateResponse(request, "index.html", {})

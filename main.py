import logging
import os
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import RedirectResponse, JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from dataBase import db, init_indexes, MONGO_DB_NAME
from routes import auth_routes, book_routes, exchange_routes
from uploads import book_uploader, PUBLIC_PREFIX, UPLOAD_ROOT

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="BookSwap API", version="1.0.0")

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# StaticFiles refuses to mount a missing directory
book_uploader.ensure_directory()
app.mount(PUBLIC_PREFIX, StaticFiles(directory=UPLOAD_ROOT), name="uploads")

app.include_router(auth_routes, prefix="/api")
app.include_router(book_routes, prefix="/api")
app.include_router(exchange_routes, prefix="/api")


@app.on_event("startup")
async def startup():
    book_uploader.ensure_directory()
    await init_indexes(db)
    logger.info("BookSwap API started on database %s, uploads served from %s", MONGO_DB_NAME, UPLOAD_ROOT)


@app.get("/", include_in_schema=False)
def root():
    return RedirectResponse(url="/docs")


def format_validation_errors(errors) -> list:
    formatted = []
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path", "form")]
        message = error.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        formatted.append({"field": ".".join(loc) or None, "message": message})
    return formatted


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"detail": "Validation failed", "errors": format_validation_errors(exc.errors())},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Server error"})

from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from grove.errors import GroveError
from grove.routers import branch_types, branches, stories, trees, upload, users
from grove.utils.logging import setup_logging

# Register every table on Base.metadata
from grove.models import branch, story, tree, user  # noqa: F401

logger = setup_logging()

app = FastAPI(title="Grove Memorial Trees API")

@app.exception_handler(GroveError)
async def grove_error_handler(request: Request, exc: GroveError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # Malformed bodies and query strings are reported as 400, not 422
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{field}: {error.get('msg')}" if field else error.get("msg"))
    return JSONResponse(status_code=400, content={"detail": "; ".join(problems) or "Invalid request"})

@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"Database error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})

app.include_router(trees.router)
app.include_router(branches.router)
app.include_router(branch_types.router)
app.include_router(stories.router)
app.include_router(upload.router)
app.include_router(users.router)

@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "grove",
    }

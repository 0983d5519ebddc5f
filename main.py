import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from contact_repository import ContactFilter, SqliteContactRepository
from db_models import IdentifyRequest, FinalResponse
from db_setup import init_db
from errors import MissingContactInfoError, StorageError
from identity import IdentityEngine
from settings import settings

logger = logging.getLogger(__name__)


def configure_logging(level: str = settings.log_level) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the Contact table before serving requests."""
    configure_logging()
    init_db()
    yield


app = FastAPI(
    title="Bitespeed Contact Reconciliation API",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_repository() -> SqliteContactRepository:
    return SqliteContactRepository(settings.database_path)


def get_engine(repository: SqliteContactRepository = Depends(get_repository)) -> IdentityEngine:
    return IdentityEngine(repository)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report malformed bodies as 400 like other caller errors."""
    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "detail": jsonable_errors(exc)}
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    errors = []
    for error in exc.errors():
        sanitized = {key: error[key] for key in ("type", "loc", "msg") if key in error}
        errors.append(sanitized)
    return errors


@app.exception_handler(MissingContactInfoError)
async def missing_contact_handler(request: Request, exc: MissingContactInfoError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error("Error in %s: %s", request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.get("/")
async def root():
    return {"message": "Bitespeed API is up"}


@app.get("/health")
def health(repository: SqliteContactRepository = Depends(get_repository)):
    try:
        repository.find_many(ContactFilter(ids=(0,)))
    except StorageError:
        logger.exception("Health check failed")
        return JSONResponse(status_code=503, content={"status": "unavailable"})
    return {"status": "ok"}


@app.post("/identify", response_model=FinalResponse)
def identify(request: IdentifyRequest, engine: IdentityEngine = Depends(get_engine)):
    contact = engine.identify(request.email, request.phoneNumber)
    return FinalResponse(contact=contact)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)

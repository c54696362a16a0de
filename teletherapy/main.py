import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from teletherapy.core import config
from teletherapy.database import Base, SessionLocal, engine, ensure_session_ledger_schema
from teletherapy.models import appointment, therapist, therapist_session, user  # noqa: F401
from teletherapy.routes import booking_routes
from teletherapy.services.sweeper import SessionSweeper

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)

sweeper = SessionSweeper(SessionLocal)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get('msg', 'Invalid request') if errors else 'Invalid request'
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={'success': False, 'message': message.removeprefix('Value error, ')},
    )


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_session_ledger_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and credentials.')


@app.on_event('startup')
def start_sweeper() -> None:
    if config.SWEEPER_ENABLED:
        sweeper.start()


@app.on_event('shutdown')
def stop_sweeper() -> None:
    sweeper.shutdown(wait=False)


@app.get('/')
def root():
    return {'status': 'Teletherapy API Running'}


app.include_router(booking_routes.router, prefix='/booking')

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from booking_engine.core import config
from booking_engine.database import Base, engine, ensure_appointment_schema
from booking_engine.models import appointment, calendar_credential, working_hours
from booking_engine.routes import appointment_routes, availability_routes
from booking_engine.wiring import get_availability_calculator, get_calendar_mirror

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

logger = logging.getLogger(__name__)

# Imported for their table registrations on Base.metadata.
_MODELS = (appointment, calendar_credential, working_hours)


def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.validate_runtime_config()
    initialize_database()
    yield
    get_availability_calculator().shutdown()
    get_calendar_mirror().shutdown()


app = FastAPI(title='Appointment Booking Engine', lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.get('/')
def root():
    return {'status': 'Booking Engine API Running'}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(appointment_routes.router, prefix='/appointments')

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from clinic_scheduler.core import config
from clinic_scheduler.core.services import shutdown_services
from clinic_scheduler.database import ensure_appointment_schema, ensure_ledger_schema, init_db
from clinic_scheduler.routes import appointment_routes, availability_routes

app = FastAPI(title='Clinic Scheduler API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    logging.getLogger('clinic_scheduler').setLevel(config.LOG_LEVEL)

    try:
        init_db()
        ensure_appointment_schema()
        ensure_ledger_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.on_event('shutdown')
def stop_services() -> None:
    shutdown_services()


@app.get('/')
def root():
    return {'status': 'Clinic Scheduler API Running'}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(appointment_routes.router, prefix='/appointments')

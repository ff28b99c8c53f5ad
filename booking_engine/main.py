import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from booking_engine.core import config
from booking_engine.database import init_db
from booking_engine.presence import PresenceService
from booking_engine.repository import ReservationRepository
from booking_engine.routes import booking_routes, presence_routes
from booking_engine.service import SchedulingService

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)

config.validate_runtime_config()

app = FastAPI(title='Booking Engine API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

app.state.scheduling_service = SchedulingService(ReservationRepository())
app.state.presence_service = PresenceService()


@app.on_event('startup')
async def start_services() -> None:
    try:
        init_db()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')
    await app.state.presence_service.start()


@app.on_event('shutdown')
async def stop_services() -> None:
    await app.state.presence_service.stop()
    app.state.scheduling_service.close()


@app.get('/')
def root():
    return {'status': 'Booking Engine API Running'}


app.include_router(booking_routes.router, prefix='/scheduling')
app.include_router(presence_routes.router, prefix='/presence')

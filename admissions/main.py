from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request

from admissions.config import settings
from admissions.db import Base, engine
from admissions.route_logging import EndpointNameRoute
from admissions.routers import admissions

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title=settings.app_name, version='0.1.0', lifespan=lifespan)
app.router.route_class = EndpointNameRoute


@app.middleware('http')
async def slow_request_logger(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000.0
    if duration_ms >= settings.metrics_slow_ms:
        logging.getLogger('admissions.request').info(
            'request_slow path=%s method=%s status_code=%s duration_ms=%.2f',
            request.url.path,
            request.method,
            response.status_code,
            duration_ms,
        )
    return response

app.include_router(admissions.router)
app.include_router(admissions.id_router)


@app.get('/health')
def healthcheck():
    return {'app': settings.app_name, 'status': 'ok'}

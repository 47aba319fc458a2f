import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request

from starlette.middleware.base import BaseHTTPMiddleware
from libtrack.config import settings
from libtrack.database import engine, Base
from libtrack.routes import auth, book, reservation, notifier as notifier_routes
from libtrack.services.notifier import notifier
from libtrack.services.sweeper import sweeper

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log incoming requests."""
    async def dispatch(self, request: Request, call_next):
        auth_header = request.headers.get("Authorization")
        client_ip = request.client.host if request.client else "unknown"
        logger.info(f"{request.method} {request.url.path} - IP: {client_ip} - Auth: {'Present' if auth_header else 'Missing'}")

        response = await call_next(request)
        return response

Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the change notifier and the expiry sweeper (which sweeps once immediately)."""
    logger.info("Starting notifier and expiry sweeper...")
    notifier.connect()
    sweeper.start()

    yield

    logger.info("Stopping expiry sweeper and notifier...")
    sweeper.stop()
    notifier.disconnect()


app = FastAPI(
    title="Library Reservation Tracker API",
    description="Admin backend for the library catalog and loan reservations",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(LoggingMiddleware)

# Include routers
app.include_router(auth.router)
app.include_router(book.router)
app.include_router(reservation.router)
app.include_router(notifier_routes.router)

@app.get("/")
async def root():
    return {"message": "Library Reservation Tracker API", "version": "1.0.0"}

@app.get("/api/health")
async def health_check():
    return {"status": "healthy"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "libtrack.main:app",
        host=settings.host,
        port=settings.port,
        reload=True
    )

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from pixcheckout.auth import ensure_jwt_secret
from pixcheckout.checkout import CheckoutManager
from pixcheckout.config import Settings, load_settings, save_settings
from pixcheckout.database import Base, create_engine_and_sessionmaker
from pixcheckout.exceptions import CheckoutError
from pixcheckout.pixgo_service import PixGoClient
from pixcheckout.routes import router
from pixcheckout.scheduler import PollScheduler
from pixcheckout.store import IntentStore

logger = logging.getLogger(__name__)


def create_app(settings: Settings, provider=None, scheduler=None) -> FastAPI:
    engine, SessionLocal = create_engine_and_sessionmaker(settings.database_url)
    store = IntentStore(SessionLocal)
    provider = provider or PixGoClient(settings.pixgo_api_base, settings.pixgo_timeout_seconds)
    scheduler = scheduler or PollScheduler()
    checkout = CheckoutManager(store, provider, scheduler, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        Base.metadata.create_all(bind=engine)
        ensure_jwt_secret(settings)
        scheduler.start()
        checkout.start()
        logger.info("PIX checkout service started")

        yield

        checkout.shutdown()
        scheduler.shutdown()
        save_settings(settings)
        engine.dispose()
        logger.info("PIX checkout service stopped")

    app = FastAPI(title="PIX Checkout Links", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.store = store
    app.state.checkout = checkout

    @app.exception_handler(CheckoutError)
    async def checkout_error_handler(request: Request, exc: CheckoutError):
        logger.warning("%s: %s", exc.error_code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/health")
    def health():
        return {"status": "ok", "api_key_configured": bool(settings.pixgo_api_key)}

    app.include_router(router)
    return app


settings = load_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

app = create_app(settings)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("pixcheckout.main:app", host="0.0.0.0", port=8000)

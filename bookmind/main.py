import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from bookmind.core.cache import close_cache
from bookmind.core.database import engine, Base
from bookmind.api.router import api_router

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)


# Create missing tables on start, flush background cache work and close
# connections on shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logging.info("Database schema is up-to-date")
    except Exception as e:
        logging.error(f"Schema setup failed during startup: {e}")

    yield
    await close_cache()
    await engine.dispose()


app = FastAPI(title="BookMind Library API", lifespan=lifespan)

# Include the master router containing all our endpoints
app.include_router(api_router)


@app.get("/")
async def root():
    return {"message": "Welcome to the BookMind Library API"}

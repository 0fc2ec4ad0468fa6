from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo.errors import PyMongoError

from registrar import __version__, config
from registrar.app_logger import get_logger, setup_logging
from registrar.database import COLLECTIONS, Store, get_store
from registrar.errors import install_error_handlers
from registrar.rollover import RolloverScheduler
from registrar.routes import admin_router, gpa_router, student_router

setup_logging()
logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = get_store()
    try:
        store.ensure_indexes()
    except PyMongoError:
        logger.exception("Could not create indexes, continuing without them")

    scheduler = None
    if config.TERM_ROLLOVER_ENABLED:
        scheduler = RolloverScheduler(store)
        scheduler.start()
    app.state.rollover = scheduler
    yield
    if scheduler is not None:
        await scheduler.stop()


app = FastAPI(title="Registrar API", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

install_error_handlers(app)

app.include_router(student_router)
app.include_router(admin_router)
app.include_router(gpa_router)


@app.get("/")
def root():
    return {"message": "Registrar API running"}


# ---------- Utilities ----------
@app.get("/schema")
def get_schema():
    return {"schemas": COLLECTIONS}


@app.get("/test")
def test_database(store: Store = Depends(get_store)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if config.DATABASE_URL else "❌ Not Set",
        "database_name": config.DATABASE_NAME,
        "transactions": config.MONGO_TRANSACTIONS,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        collections = store.db.list_collection_names()
    except PyMongoError as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        return response
    response["connection_status"] = "Connected"
    response["collections"] = sorted(collections)[:10]
    response["database"] = "✅ Connected & Working"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)

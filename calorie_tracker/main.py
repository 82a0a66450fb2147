import logging
import os
import sys
from pathlib import Path

import psycopg2
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

_project_root = Path(__file__).resolve().parents[1]
if str(_project_root) not in sys.path:
    sys.path.append(str(_project_root))

load_dotenv()

from calorie_tracker import app_context  # noqa: E402
from calorie_tracker.app.routes.billing import router as billing_router  # noqa: E402
from calorie_tracker.app.routes.entitlements import router as entitlements_router  # noqa: E402
from calorie_tracker.app.routes.feature_gates import router as feature_gates_router  # noqa: E402
from calorie_tracker.app.routes.paywall import router as paywall_router  # noqa: E402
from calorie_tracker.app.services.entitlements import get_entitlement_runtime  # noqa: E402
from calorie_tracker.config import load_database_config  # noqa: E402

logger = logging.getLogger("calorie_tracker")

DB_CFG = load_database_config().connect_kwargs()


def get_conn():
    return psycopg2.connect(**DB_CFG)


app_context.configure(get_conn=get_conn)

app = FastAPI(title="Calorie Tracker Entitlements API")

# Client shell origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=[os.getenv("APP_BASE_URL", "http://localhost:5173")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(entitlements_router)
app.include_router(billing_router)
app.include_router(paywall_router)
app.include_router(feature_gates_router)


@app.on_event("startup")
async def start_entitlements() -> None:
    runtime = get_entitlement_runtime()
    await runtime.start()
    app.state.entitlement_runtime = runtime


@app.on_event("shutdown")
async def stop_entitlements() -> None:
    runtime = getattr(app.state, "entitlement_runtime", None)
    if runtime is not None:
        await runtime.shutdown()
    logger.info("Shutdown complete")

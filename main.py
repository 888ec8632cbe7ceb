import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import SQLModel

import models  # Ensure every table is known by SQLModel for table creation
from api.admin_company_routes import router as admin_company_router
from api.enrollment_routes import router as enrollment_router
from api.subscription_routes import router as subscription_router
from api.super_admin_routes import router as super_admin_router
from api.time_routes import router as time_router
from core.settings import DEV_DOMAIN, PRODUCTION_DOMAIN
from db.session import engine

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

# This file is the control center of the whole application

# Construct the list of allowed origins, always including both dev and production
allowed_origins_list = [
    DEV_DOMAIN,
    PRODUCTION_DOMAIN,
    "http://localhost:3000",  # Additional fallback for React dev
    "http://127.0.0.1:5173",  # Additional fallback for Vite dev
]

# Remove any None values and duplicates
allowed_origins_list = list(set([origin for origin in allowed_origins_list if origin]))

logger.info(f"🌐 CORS: Allowing origins: {allowed_origins_list}")


# When We Start, Create the DB Tables if they don't exist
@asynccontextmanager
async def lifespan(app: FastAPI):

    SQLModel.metadata.create_all(engine)

    yield


# Starts Fast API Up; Init
app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins_list,  # Use the constructed list
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Kiosk clock-in / out
app.include_router(time_router, prefix="/time", tags=["Time"])
app.include_router(enrollment_router, prefix="/enroll", tags=["Enrollment"])
app.include_router(admin_company_router, prefix="/admin/company", tags=["Admin", "Company Management"])
app.include_router(subscription_router, prefix="/subscription", tags=["Admin", "Subscription"])
app.include_router(super_admin_router, prefix="/super-admin", tags=["Super Admin"])


@app.get("/")
def health():
    return {"status": "ok"}

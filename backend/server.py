from fastapi import FastAPI, APIRouter
from starlette.middleware.cors import CORSMiddleware
import logging

from config import client, CORS_ORIGINS, now_iso
from routes.connections import router as connections_router
from routes.pairing import router as pairing_router
from scheduler_service import task_scheduler
from services.pairing_manager import get_pairing_manager

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create the main app without a prefix
app = FastAPI(title="CRM Conexões")

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")


@api_router.get("/health")
async def health():
    return {"status": "ok", "time": now_iso()}


api_router.include_router(connections_router)
api_router.include_router(pairing_router)

# Include the router in the main app
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def start_scheduler():
    task_scheduler.start()


@app.on_event("shutdown")
async def shutdown():
    get_pairing_manager().close_all()
    task_scheduler.stop()
    client.close()

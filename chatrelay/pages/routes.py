from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from chatrelay.config import MODEL_CONFIG

router = APIRouter()


@router.get("/", response_class=PlainTextResponse)
async def get_root_page():
    backend = MODEL_CONFIG["BACKEND"]
    target = MODEL_CONFIG["API_URL"] if backend == "http" else MODEL_CONFIG["BINARY"]
    return f"✅ Backend relay activo: modelo vía {backend} ({target})."

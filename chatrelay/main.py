# chatrelay/main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatrelay.config import SERVER_CONFIG, configure_logging, validate_config
from chatrelay.db.db import init_db
from chatrelay.chat.routes import router as chat_router
from chatrelay.pages.routes import router as pages_router
from chatrelay.visitors.routes import router as visitors_router

configure_logging()
validate_config()

app = FastAPI(title="Portfolio chat relay")

app.include_router(chat_router)
app.include_router(visitors_router)
app.include_router(pages_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=SERVER_CONFIG["ALLOWED_ORIGINS"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


init_db()

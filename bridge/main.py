from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.http import create_http_router
from .api.ws import create_websocket_endpoint
from .config import SettingsRepository, data_dir, load_environment
from .services.connection_manager import ConnectionManager
from .services.host import ChatLog, ChatModelGenerator, FileCharacterStore
from .services.persistence import ChatLogRepository, PersistenceWorker
from .session.controller import SessionController


load_environment()
DATA_DIR = data_dir()

app = FastAPI(title="Dual Tavern Bridge")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

settings = SettingsRepository(DATA_DIR / "settings.json")
characters = FileCharacterStore(DATA_DIR / "characters.json")
chat_log = ChatLog(PersistenceWorker(ChatLogRepository(DATA_DIR / "chatlog.json")))
controller = SessionController(settings, characters, ChatModelGenerator(), chat_log)
connections = ConnectionManager()
controller.subscribe(connections.broadcast)

app.include_router(create_http_router(controller))

websocket_endpoint = create_websocket_endpoint(controller, connections)
app.websocket("/ws")(websocket_endpoint)


@app.on_event("startup")
async def auto_connect() -> None:
    await controller.auto_connect()


@app.on_event("shutdown")
async def close_relay() -> None:
    await controller.link.disconnect()
    if chat_log.persistence:
        await chat_log.persistence.flush()

from dotenv import load_dotenv

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from parley.auth import routers as auth_router
from parley.contacts import routers as contacts_router
from parley.chat import routers as chat_router
from parley.presence import routers as presence_router
from parley.assistant import routers as assistant_router
from parley.calls import routers as calls_router

from parley.auth.session import session_events
from parley.core.errors import ParleyError, parley_error_handler
from parley.core.middleware import logging_middleware
from parley.core.realtime import hub
from parley.presence.tracker import drop_presence_on_sign_out
from parley.utils.env_helper import env_list
from parley.utils.logging_config import setup_logging

load_dotenv()
setup_logging()

app = FastAPI(title="Parley")
app.include_router(auth_router.router, prefix="/auth", tags=["Authentication"])
app.include_router(contacts_router.router, prefix="/contacts", tags=["Contacts"])
app.include_router(chat_router.router, prefix="/chat", tags=["Chat"])
app.include_router(presence_router.router, prefix="/presence", tags=["Presence"])
app.include_router(assistant_router.router, prefix="/assistant", tags=["Assistant"])
app.include_router(calls_router.router, prefix="/calls", tags=["Calls"])

app.add_exception_handler(ParleyError, parley_error_handler)
app.middleware("http")(logging_middleware)

origins = env_list("CORS_ORIGINS", ["http://localhost:5173", "http://localhost:8080"])

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

session_events.subscribe(drop_presence_on_sign_out(hub))

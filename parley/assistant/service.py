import os
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Union

import httpx
from dotenv import load_dotenv
from fastapi import status

from parley.core.errors import ParleyError

from .schemas import ChatTurn


load_dotenv()
logger = logging.getLogger(__name__)

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
DEFAULT_MODEL = "gemini-1.0-pro"

NO_RESPONSE_TEXT = "No response from the AI."
FALLBACK_REPLY = "I'm sorry, I couldn't process that request."
ERROR_REPLY = "I encountered an error processing your request. Please try again later."
WELCOME_MESSAGE = "Hello! I'm your Gemini AI assistant. How can I help you today?"

GENERATION_CONFIG = {
    "temperature": 0.7,
    "topK": 40,
    "topP": 0.95,
    "maxOutputTokens": 1024,
}

SAFETY_SETTINGS = [
    {"category": category, "threshold": "BLOCK_MEDIUM_AND_ABOVE"}
    for category in (
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
    )
]


class AssistantError(ParleyError):
    status_code = status.HTTP_502_BAD_GATEWAY


class AssistantBridge:
    """Stateless bridge to the Gemini `generateContent` endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
        timeout: float = 30.0,
    ):
        self.api_key = api_key or os.getenv("GEMINI_API_KEY")
        self.model = model or os.getenv("GEMINI_MODEL", DEFAULT_MODEL)
        self.timeout = timeout
        self._client = http_client

    @staticmethod
    def build_contents(prompt: str, history: Iterable[Union[ChatTurn, dict]]) -> List[dict]:
        """Role-tagged history plus the new prompt, in Gemini's shape."""
        contents = []
        for turn in history:
            if isinstance(turn, dict):
                turn = ChatTurn(**turn)
            contents.append(
                {
                    "role": "user" if turn.role == "user" else "model",
                    "parts": [{"text": turn.content}],
                }
            )
        contents.append({"role": "user", "parts": [{"text": prompt}]})
        return contents

    def ask(self, prompt: str, history: Iterable[Union[ChatTurn, dict]] = ()) -> str:
        """
        Send one prompt with its history and return the completion text.

        Raises AssistantError for a missing key, network failures, HTTP
        errors and error payloads. An answer without text becomes
        NO_RESPONSE_TEXT rather than an error. No retries.
        """
        if not self.api_key:
            raise AssistantError("GEMINI_API_KEY is not set")

        history = list(history)
        body = {
            "contents": self.build_contents(prompt, history),
            "generationConfig": GENERATION_CONFIG,
            "safetySettings": SAFETY_SETTINGS,
        }

        logger.info(f"assistant_request model={self.model} history_length={len(history)}")

        try:
            response = self._post(GEMINI_API_URL.format(model=self.model), body)
        except httpx.HTTPError as e:
            logger.error(f"assistant_unreachable error={e}")
            raise AssistantError("Failed to connect to AI service") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if isinstance(data, dict) and data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            logger.error(f"assistant_api_error status={response.status_code} error={message}")
            raise AssistantError(message or "Error from Gemini API")

        if response.is_error:
            logger.error(f"assistant_http_error status={response.status_code}")
            raise AssistantError(f"AI service returned HTTP {response.status_code}")

        return self.extract_text(data) or NO_RESPONSE_TEXT

    @staticmethod
    def extract_text(data) -> Optional[str]:
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            return None

    def _post(self, url: str, body: dict) -> httpx.Response:
        params = {"key": self.api_key}
        if self._client is not None:
            return self._client.post(url, params=params, json=body)

        with httpx.Client(timeout=self.timeout) as client:
            return client.post(url, params=params, json=body)


@dataclass
class Turn:
    role: str
    content: str
    timestamp: datetime

    def as_chat_turn(self) -> ChatTurn:
        return ChatTurn(role=self.role, content=self.content)


@dataclass
class AssistantReply:
    turn: Turn
    notice: Optional[str] = None


class AssistantConversation:
    """
    One user's in-memory conversation with the assistant. Nothing is
    persisted; a new conversation starts from the welcome message.
    """

    def __init__(self, bridge: AssistantBridge, now: Optional[Callable[[], datetime]] = None):
        self.bridge = bridge
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.turns: List[Turn] = [Turn("assistant", WELCOME_MESSAGE, self._now())]

    def send(self, prompt: str) -> Optional[AssistantReply]:
        """
        Ask the assistant once. Blank prompts return None. Failures still
        add an assistant turn saying so, and come back with a notice.
        """
        if not prompt or not prompt.strip():
            return None

        history = [turn.as_chat_turn() for turn in self.turns]
        self.turns.append(Turn("user", prompt, self._now()))

        try:
            text = self.bridge.ask(prompt, history)
        except AssistantError as e:
            turn = Turn("assistant", ERROR_REPLY, self._now())
            self.turns.append(turn)
            return AssistantReply(turn, notice=f"Error: {e.message}")

        turn = Turn("assistant", text or FALLBACK_REPLY, self._now())
        self.turns.append(turn)
        return AssistantReply(turn)


def get_assistant_bridge() -> AssistantBridge:
    return AssistantBridge()

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from .config import Settings
from .errors import GatewayError
from .prompts import DEFAULT_PERSONALITY, get_system_prompt, prepare_turns


logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Rate limits exceeded, please try again later."
PAYMENT_REQUIRED_MESSAGE = "Payment required, please add funds to your AI workspace."


@dataclass
class ImageResult:
    url: Optional[str]
    message: str


class Gateway:
    """Hosted LLM behind one call for chat and one for images."""

    def complete(self, turns: List[Dict[str, str]], personality: str = DEFAULT_PERSONALITY) -> str:
        raise NotImplementedError

    def generate_image(self, prompt: str) -> ImageResult:
        raise NotImplementedError


def _to_gemini_history(turns: List[Dict[str, str]]):
    gemini_hist = []
    for msg in turns:
        role = "user" if msg.get("role") == "user" else "model"
        content = msg.get("content", "")
        if content:
            gemini_hist.append({"role": role, "parts": [content]})
    return gemini_hist


def _map_exhausted(e: Exception) -> GatewayError:
    text = str(e).lower()
    if "billing" in text or ("quota" in text and "per minute" not in text):
        return GatewayError(GatewayError.PAYMENT_REQUIRED, PAYMENT_REQUIRED_MESSAGE, 402)
    return GatewayError(GatewayError.RATE_LIMITED, RATE_LIMIT_MESSAGE, 429)


class GeminiGateway(Gateway):
    def __init__(self, api_key: Optional[str], model: str, image_model: str) -> None:
        self.api_key = api_key
        self.model = model
        self.image_model = image_model

    def _configure(self) -> None:
        if not self.api_key:
            raise GatewayError(
                GatewayError.UPSTREAM,
                "Missing GEMINI_API_KEY. Set environment variable GEMINI_API_KEY.",
                500,
            )
        genai.configure(api_key=self.api_key)

    def complete(self, turns: List[Dict[str, str]], personality: str = DEFAULT_PERSONALITY) -> str:
        turns = prepare_turns(turns)
        if not turns:
            raise ValueError("At least one message is required")
        self._configure()

        logger.info("Generating text response with personality: %s", personality)
        model = genai.GenerativeModel(self.model, system_instruction=get_system_prompt(personality))
        try:
            chat_session = model.start_chat(history=_to_gemini_history(turns[:-1]))
            response = chat_session.send_message(turns[-1].get("content", ""))
            return response.text
        except google_exceptions.ResourceExhausted as e:
            raise _map_exhausted(e) from e
        except google_exceptions.GoogleAPIError as e:
            logger.error("AI API error: %s", e)
            raise GatewayError(GatewayError.UPSTREAM, f"Gemini call failed: {e}", 502) from e

    def generate_image(self, prompt: str) -> ImageResult:
        if not prompt:
            raise ValueError("Prompt is required for image generation")
        self._configure()

        model = genai.GenerativeModel(self.image_model)
        try:
            response = model.generate_content(prompt)
        except google_exceptions.ResourceExhausted as e:
            raise _map_exhausted(e) from e
        except google_exceptions.GoogleAPIError as e:
            logger.error("Image generation error: %s", e)
            raise GatewayError(GatewayError.UPSTREAM, f"Image generation failed: {e}", 502) from e

        url = None
        texts: List[str] = []
        for candidate in response.candidates[:1]:
            for part in candidate.content.parts:
                blob = getattr(part, "inline_data", None)
                if blob is not None and blob.data and url is None:
                    encoded = base64.b64encode(blob.data).decode("ascii")
                    url = f"data:{blob.mime_type or 'image/png'};base64,{encoded}"
                elif getattr(part, "text", ""):
                    texts.append(part.text)
        return ImageResult(url=url, message="".join(texts).strip() or "Image generated successfully")


class DemoGateway(Gateway):
    """Canned replies so the app runs without an API key (DEMO_MOCK=1)."""

    def complete(self, turns: List[Dict[str, str]], personality: str = DEFAULT_PERSONALITY) -> str:
        turns = prepare_turns(turns)
        if not turns:
            raise ValueError("At least one message is required")
        message = turns[-1].get("content", "")
        low = message.lower()

        if low.startswith("please provide a concise summary of:"):
            body = message.split(":", 1)[1].strip()
            words = body.split()
            return "**Summary:** " + " ".join(words[:25]) + ("..." if len(words) > 25 else "")
        if low.startswith("please create a detailed plan"):
            return "Here's a simple plan:\n\n1. Define the goal\n2. Break it into steps\n3. Schedule the first step today"
        if any(k in low for k in ["code", "python", "bug", "error"]):
            return "Paste the code and the full error, and I'll walk through it with you.\n\n```python\nprint('hello from Siivi')\n```"

        openers = {
            "funny": "Ha! Good one. ",
            "professional": "Understood. ",
            "motivational": "You've got this! ",
        }
        return openers.get(personality, "") + "I'm Siivi. Tell me a bit more and I'll help you out."

    def generate_image(self, prompt: str) -> ImageResult:
        if not prompt:
            raise ValueError("Prompt is required for image generation")
        # 1x1 transparent png
        pixel = (
            "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
        )
        return ImageResult(url=f"data:image/png;base64,{pixel}", message=f"Demo image for: {prompt}")


def build_gateway(settings: Settings) -> Gateway:
    if settings.demo:
        return DemoGateway()
    return GeminiGateway(settings.gemini_api_key, settings.gemini_model, settings.gemini_image_model)

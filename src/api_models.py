import json
import logging
import os
import re
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from PIL import Image
import google.generativeai as genai

from detector_errors import PermissionDeniedError
from detectors import RecognizedText, TextRecognizer
from prompts import TEXT_RECOGNITION_PROMPT

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.0-flash"


class Conversation(ABC):
    @abstractmethod
    def __init__(self, user_prompt, system_prompt=None):
        pass


class GeminiConversation(Conversation):
    def __init__(self, user_prompt, system_prompt=None):
        self.messages = []
        if system_prompt is not None:
            self.messages.append({"role": "user", "parts": system_prompt})
            self.messages.append({"role": "model", "parts": "Understood."})

        first_message = {"role": "user", "parts": user_prompt}
        self.messages.append(first_message)


class Model(ABC):
    def __init__(self, model_name):
        self.model_name = model_name

    @abstractmethod
    def call_model(self, user_prompt, system_prompt=None, images=None):
        pass


def create_model(model_name=DEFAULT_MODEL, api_key=None):
    supported = {"gemini-2.0-flash", "gemini-flash-latest"}
    if model_name not in supported:
        raise NotImplementedError("This build only supports Gemini Flash models.")
    return GeminiModel(DEFAULT_MODEL, api_key=api_key)


class GeminiModel(Model):
    def __init__(self, model_name=DEFAULT_MODEL, api_key=None):
        api_key = api_key or os.environ.get("GEMINI_API_KEY")
        if not api_key:
            raise EnvironmentError("Set GEMINI_API_KEY before enabling text recognition.")

        genai.configure(api_key=api_key)
        self.model_name = model_name
        self.model = genai.GenerativeModel(self.model_name)
        self.convo = None

    def call_model(self, user_prompt, system_prompt=None, images=None):
        """``images`` may mix file paths and PIL images."""
        parts = [user_prompt]
        for image in images or []:
            if isinstance(image, Image.Image):
                parts.append(image.convert("RGB") if image.mode != "RGB" else image)
                continue
            with Image.open(image) as img:
                if img.mode != "RGB":
                    img = img.convert("RGB")
                parts.append(img.copy())

        self.convo = GeminiConversation(user_prompt=parts, system_prompt=system_prompt)
        response = self.model.generate_content(self.convo.messages)
        return response.text


class GeminiTextRecognizer(TextRecognizer):
    """Text recognition backed by a Gemini vision model."""

    def __init__(self, model: Optional[Model] = None, model_name: str = DEFAULT_MODEL) -> None:
        self._model = model
        self.model_name = model_name

    @property
    def model(self) -> Model:
        if self._model is None:
            try:
                self._model = create_model(self.model_name)
            except EnvironmentError as exc:
                raise PermissionDeniedError(str(exc)) from exc
        return self._model

    def recognize_text(self, image) -> RecognizedText:
        response = self.model.call_model(user_prompt=TEXT_RECOGNITION_PROMPT, images=[image])
        return parse_recognition(response)


def parse_recognition(text: str) -> RecognizedText:
    if not text:
        return RecognizedText(error="Empty recognition response")

    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```(?:json)?", "", cleaned).rstrip("`").strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", cleaned, re.DOTALL)
        if not match:
            logger.warning("Recognition response was not JSON: %s", cleaned[:120])
            return RecognizedText(error="Unparseable recognition response")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError:
            return RecognizedText(error="Unparseable recognition response")

    if not isinstance(data, dict):
        return RecognizedText(error="Unexpected recognition payload")

    regions: List[Tuple[str, float]] = []
    for region in data.get("regions") or []:
        if not isinstance(region, dict):
            continue
        value = str(region.get("text") or "").strip()
        if not value:
            continue
        try:
            confidence = float(region.get("confidence", 0.5))
        except (TypeError, ValueError):
            confidence = 0.5
        regions.append((value, min(max(confidence, 0.0), 1.0)))

    body = str(data.get("text") or "").strip() or "\n".join(value for value, _ in regions)
    return RecognizedText(text=body, regions=regions)

import asyncio
import base64
import functools
import io
import json
import re
from typing import Any, Dict, List, Optional, Type, TypeVar

import requests
from loguru import logger
from PIL import Image
from pydantic import BaseModel, ValidationError

from config.settings import GEMINI_API_BASE, PipelineConfig
from src.scrapers.base import TransientNetworkError

M = TypeVar("M", bound=BaseModel)

OCR_PROMPT = "Extract all text from these document images, in order. Concatenate the text from all pages into a single response."

SUMMARY_PROMPT = "Summarize the following legal document, focusing on the key parties, dates, and purpose of the document:\n\n{text}"

EXTRACT_PROMPT = """
{instruction}

Return ONLY a valid JSON object matching this JSON schema. Leave out any
field you cannot find; never invent values.

{schema}
"""

# Returned by text_from_images instead of raising
OCR_NO_TEXT = "Could not extract text from images."
OCR_FAILED = "Failed to extract text due to a critical error."
SUMMARY_EMPTY_INPUT = "No text to summarize."
SUMMARY_NO_CONTENT = "Failed to generate summary."


def robust_json_parse(text: str, context: str = "") -> Optional[Dict[str, Any]]:
    """
    Robustly parse JSON that may have common LLM formatting issues.

    Handles:
    - Markdown code blocks
    - Trailing commas
    - Missing commas between properties
    """
    if not text:
        return None

    cleaned = text.replace("```json", "").replace("```", "").strip()

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    # Pattern: "value"\n  "key" (missing comma)
    fixed = re.sub(r'([\"\d\]\}])\s*\n+\s*(\")', r'\1,\n  \2', cleaned)
    try:
        return json.loads(fixed)
    except json.JSONDecodeError:
        pass

    fixed2 = re.sub(r',\s*([}\]])', r'\1', fixed)
    try:
        return json.loads(fixed2)
    except json.JSONDecodeError:
        snippet = cleaned[:500].replace("\n", " ")
        logger.warning("Failed to parse JSON from model response ({}): {}...", context, snippet)
        return None


class VisionService:
    """
    Gemini client for the three AI capabilities the pipeline consumes:
    structured extraction, batch OCR over page images, and summarization.
    """

    def __init__(self, config: PipelineConfig, session: Optional[requests.Session] = None, timeout: int = 180):
        self.config = config
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({'Connection': 'keep-alive'})

    @property
    def api_url(self) -> str:
        return f"{GEMINI_API_BASE}/{self.config.model_name}:generateContent"

    async def process_async(self, func, *args, **kwargs):
        """
        Run a synchronous vision method in the default thread pool.

        Args:
            func: The synchronous method to call (e.g., self.text_from_images)
            *args: Positional arguments for func
            **kwargs: Keyword arguments for func
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    def _encode_image(self, image: bytes, max_dimension: int = 2000) -> str:
        """
        Encode a page image to base64, downscaling oversized captures.

        Clerk page scans stay legible around 1600-2000px on the long edge.
        """
        try:
            with Image.open(io.BytesIO(image)) as img:
                if img.mode not in ('RGB', 'L'):
                    img = img.convert('RGB')
                width, height = img.size
                if width > max_dimension or height > max_dimension:
                    ratio = min(max_dimension / width, max_dimension / height)
                    img = img.resize((int(width * ratio), int(height * ratio)), Image.Resampling.LANCZOS)
                buffer = io.BytesIO()
                img.save(buffer, format="PNG")
                return base64.b64encode(buffer.getvalue()).decode()
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to process image with PIL: {e}. Falling back to raw bytes.")
            return base64.b64encode(image).decode()

    def _generate(self, parts: List[dict], json_output: bool = False) -> Optional[str]:
        """
        POST one generateContent request.

        Raises:
            TransientNetworkError: on transport failures and non-2xx responses.

        Returns:
            The first candidate's text, or None if the model returned none.
        """
        payload: Dict[str, Any] = {
            "contents": [{"parts": parts}],
            "generationConfig": {"temperature": 0.1},
        }
        if json_output:
            payload["generationConfig"]["responseMimeType"] = "application/json"

        try:
            response = self.session.post(
                self.api_url,
                params={"key": self.config.api_key},
                json=payload,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise TransientNetworkError(f"Gemini request failed: {e}") from e

        if not response.ok:
            logger.error("Gemini API error {}: {}", response.status_code, response.text[:500])
            raise TransientNetworkError(f"Gemini request failed with status {response.status_code}")

        result = response.json()
        try:
            text = result["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            logger.warning("Gemini returned no text content: {}", json.dumps(result)[:500])
            return None
        return text or None

    def text_from_images(self, images: List[bytes]) -> str:
        """
        OCR all page images of one document in a single request.

        Never raises; failures come back as an explanatory string.
        """
        if not images:
            return ""
        logger.info("Extracting text from {} image pages in a single batch...", len(images))
        parts: List[dict] = [{"text": OCR_PROMPT}]
        for image in images:
            parts.append({"inlineData": {"mimeType": "image/png", "data": self._encode_image(image)}})
        try:
            text = self._generate(parts)
        except Exception:
            logger.exception("Error extracting text from images in batch")
            return OCR_FAILED
        return text if text else OCR_NO_TEXT

    def summarize(self, text: str) -> str:
        """
        Summarize extracted document text.

        Raises:
            TransientNetworkError: on transport failure; callers must handle it.
        """
        if not text or not text.strip():
            return SUMMARY_EMPTY_INPUT
        logger.info("Summarizing extracted text ({} chars)...", len(text))
        summary = self._generate([{"text": SUMMARY_PROMPT.format(text=text)}])
        return summary.strip() if summary else SUMMARY_NO_CONTENT

    def extract_structured(
        self,
        instruction: str,
        schema: Type[M],
        *,
        context_text: Optional[str] = None,
        images: Optional[List[bytes]] = None,
    ) -> M:
        """
        Best-effort structured extraction from page text and/or screenshots.

        An unparsable or invalid answer yields an empty ``schema()`` instance;
        only transport failures raise (TransientNetworkError).
        """
        prompt = EXTRACT_PROMPT.format(
            instruction=instruction.strip(),
            schema=json.dumps(schema.model_json_schema(), indent=1),
        )
        parts: List[dict] = [{"text": prompt}]
        if context_text:
            parts.append({"text": f"PAGE TEXT:\n{context_text}"})
        for image in images or []:
            parts.append({"inlineData": {"mimeType": "image/png", "data": self._encode_image(image)}})

        raw = self._generate(parts, json_output=True)
        data = robust_json_parse(raw or "", context=schema.__name__)
        if not isinstance(data, dict):
            return schema()
        try:
            return schema.model_validate(data)
        except ValidationError as e:
            logger.warning("Extraction for {} did not validate: {}", schema.__name__, e)
            return schema()

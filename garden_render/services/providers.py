"""
Providers — uniform async interface to the external image-generation backends.

Three capability-tagged adapters:
  MaskedInpaintAdapter         Runware-style task API, canvas + mask as data URLs
  ReferenceConditionedAdapter  Gemini-style generateContent, canvas as inline reference
  TextToImageAdapter           Hugging Face inference API, prompt only

Each adapter owns its request shape, its cold-start signal and its result
extraction. Every failure surfaces as ProviderError (or a subclass); the
pipeline decides what to fall back to.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import os
import uuid
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from .garden_model import Canvas, GenerationParams, Mask, ProviderCapability, SEQUENTIAL_PARAMS

logger = logging.getLogger(__name__)

RUNWARE_API_URL = os.environ.get("RUNWARE_API_URL", "https://api.runware.ai/v1")
RUNWARE_API_KEY = os.environ.get("RUNWARE_API_KEY", "")
RUNWARE_MODEL = os.environ.get("RUNWARE_MODEL", "runware:100@1")

GEMINI_API_URL = os.environ.get("GEMINI_API_URL", "https://generativelanguage.googleapis.com/v1beta")
GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY", "")
GEMINI_IMAGE_MODEL = os.environ.get("GEMINI_IMAGE_MODEL", "gemini-2.0-flash-preview-image-generation")

HF_INFERENCE_URL = os.environ.get("HF_INFERENCE_URL", "https://api-inference.huggingface.co")
HF_TOKEN = os.environ.get("HF_TOKEN", "")
TEXT_TO_IMAGE_MODEL = os.environ.get("TEXT_TO_IMAGE_MODEL", "black-forest-labs/FLUX.1-dev")

REQUEST_TIMEOUT = float(os.environ.get("GARDEN_PROVIDER_TIMEOUT", "90"))
MAX_COLD_START_WAIT = 30.0

# Probed in this order; first non-empty string wins.
IMAGE_REFERENCE_FIELDS = (
    "imageURL",
    "imageUrl",
    "url",
    "imageBase64",
    "base64",
    "imageDataURI",
    "image",
)


class ProviderError(Exception):
    """Network failure, timeout, error status or unusable response from a backend."""


class ProviderColdStart(ProviderError):
    """Backend still warming up after the single permitted retry."""


class NoImageReference(ProviderError):
    """Response parsed fine but carried no image we could extract."""


async def _wait(seconds: float) -> None:
    await asyncio.sleep(seconds)


# --------------------------------------------------------------------------- #
# Payload helpers                                                              #
# --------------------------------------------------------------------------- #

def to_data_url(png: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


def extract_image_reference(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    for name in IMAGE_REFERENCE_FIELDS:
        value = payload.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def decode_inline_reference(ref: str) -> Optional[bytes]:
    """
    Decode a data URL or bare base64 string.
    Returns None for http(s) references, which have to be fetched.
    """
    if ref.startswith(("http://", "https://")):
        return None
    data = ref.split(",", 1)[1] if ref.startswith("data:") else ref
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise NoImageReference(f"Image reference is neither a URL nor base64: {ref[:40]}...") from e


async def resolve_image_reference(client: httpx.AsyncClient, ref: str) -> bytes:
    inline = decode_inline_reference(ref)
    if inline is not None:
        return inline
    response = await client.get(ref)
    if response.status_code != 200:
        raise ProviderError(f"Fetching generated image failed: {response.status_code} {ref}")
    return response.content


# --------------------------------------------------------------------------- #
# Base adapter                                                                 #
# --------------------------------------------------------------------------- #

class ProviderAdapter:
    name = "provider"
    capability: ProviderCapability
    cold_start_status = 503

    def __init__(self, api_url: str, api_key: str, model: str, timeout: float = REQUEST_TIMEOUT) -> None:
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    async def generate(
        self,
        prompt: str,
        negative_prompt: str,
        canvas: Canvas,
        mask: Optional[Mask] = None,
        params: Optional[GenerationParams] = None,
    ) -> bytes:
        """Run one generation call and return the raw image bytes."""
        params = params or SEQUENTIAL_PARAMS
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await self._generate(client, prompt, negative_prompt, canvas, mask, params)
        except ProviderError:
            raise
        except httpx.TimeoutException as e:
            raise ProviderError(f"{self.name}: request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"{self.name}: {e}") from e
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            raise ProviderError(f"{self.name}: unparseable response ({e})") from e

    async def _generate(
        self,
        client: httpx.AsyncClient,
        prompt: str,
        negative_prompt: str,
        canvas: Canvas,
        mask: Optional[Mask],
        params: GenerationParams,
    ) -> bytes:
        raise NotImplementedError

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    def _cold_start_delay(self, response: httpx.Response) -> Optional[float]:
        """Seconds the backend asks us to wait, or None when this is not a warm-up response."""
        if response.status_code != self.cold_start_status:
            return None
        try:
            estimated = response.json().get("estimated_time")
        except (ValueError, AttributeError):
            estimated = None
        if estimated is None:
            estimated = response.headers.get("Retry-After")
        if estimated is None:
            return None
        try:
            return max(0.0, float(estimated))
        except ValueError:
            return None

    async def _post(self, client: httpx.AsyncClient, url: str, **kwargs: Any) -> httpx.Response:
        response = await client.post(url, headers=self._headers(), **kwargs)
        delay = self._cold_start_delay(response)
        if delay is not None:
            wait = min(delay, MAX_COLD_START_WAIT)
            logger.info(f"{self.name}: model loading, waiting {wait:.0f}s before one retry")
            await _wait(wait)
            response = await client.post(url, headers=self._headers(), **kwargs)
            if self._cold_start_delay(response) is not None:
                raise ProviderColdStart(f"{self.name}: model still loading after retry")
        if response.status_code >= 400:
            raise ProviderError(f"{self.name} returned {response.status_code}: {response.text[:200]}")
        return response


# --------------------------------------------------------------------------- #
# Variants                                                                     #
# --------------------------------------------------------------------------- #

class MaskedInpaintAdapter(ProviderAdapter):
    name = "runware-inpaint"
    capability = ProviderCapability.MASKED_INPAINT

    def __init__(
        self,
        api_url: str = RUNWARE_API_URL,
        api_key: str = RUNWARE_API_KEY,
        model: str = RUNWARE_MODEL,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        super().__init__(api_url, api_key, model, timeout)

    def build_task(
        self,
        prompt: str,
        negative_prompt: str,
        canvas: Canvas,
        mask: Optional[Mask],
        params: GenerationParams,
    ) -> dict[str, Any]:
        task: dict[str, Any] = {
            "taskType": "imageInference",
            "taskUUID": str(uuid.uuid4()),
            "model": self.model,
            "positivePrompt": prompt,
            "negativePrompt": negative_prompt,
            "seedImage": to_data_url(canvas.pixels),
            "width": canvas.width,
            "height": canvas.height,
            "strength": params.strength,
            "CFGScale": params.guidance_scale,
            "steps": params.step_count,
            "numberResults": 1,
            "outputType": "URL",
            "outputFormat": "PNG",
        }
        if mask is not None:
            task["maskImage"] = to_data_url(mask.pixels)
        if params.seed is not None:
            task["seed"] = params.seed
        return task

    async def _generate(self, client, prompt, negative_prompt, canvas, mask, params) -> bytes:
        task = self.build_task(prompt, negative_prompt, canvas, mask, params)
        response = await self._post(client, self.api_url, json=[task])
        body = response.json()

        if isinstance(body, dict) and body.get("errors"):
            raise ProviderError(f"{self.name} task failed: {body['errors']}")

        first: Any = body
        if isinstance(body, dict) and isinstance(body.get("data"), list):
            first = body["data"][0] if body["data"] else None
        elif isinstance(body, list):
            first = body[0] if body else None

        ref = extract_image_reference(first)
        if ref is None:
            raise NoImageReference(f"{self.name}: no image reference in response")
        return await resolve_image_reference(client, ref)


class ReferenceConditionedAdapter(ProviderAdapter):
    name = "gemini-reference"
    capability = ProviderCapability.REFERENCE_CONDITIONED
    default_retry_after = 10.0

    def __init__(
        self,
        api_url: str = GEMINI_API_URL,
        api_key: str = GEMINI_API_KEY,
        model: str = GEMINI_IMAGE_MODEL,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        super().__init__(api_url, api_key, model, timeout)

    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}

    def _cold_start_delay(self, response: httpx.Response) -> Optional[float]:
        # Gemini signals warm-up/overload as 503 UNAVAILABLE, optionally with Retry-After.
        if response.status_code != self.cold_start_status:
            return None
        try:
            return max(0.0, float(response.headers.get("Retry-After", self.default_retry_after)))
        except ValueError:
            return self.default_retry_after

    def build_body(
        self,
        prompt: str,
        negative_prompt: str,
        canvas: Canvas,
        params: GenerationParams,
    ) -> dict[str, Any]:
        text = prompt if not negative_prompt else f"{prompt}\n\nAvoid: {negative_prompt}"
        generation_config: dict[str, Any] = {"responseModalities": ["TEXT", "IMAGE"]}
        if params.seed is not None:
            generation_config["seed"] = params.seed
        return {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {
                            "inlineData": {
                                "mimeType": "image/png",
                                "data": base64.b64encode(canvas.pixels).decode("ascii"),
                            }
                        },
                        {"text": text},
                    ],
                }
            ],
            "generationConfig": generation_config,
        }

    async def _generate(self, client, prompt, negative_prompt, canvas, mask, params) -> bytes:
        # No region containment: the mask is not expressible in this API.
        url = f"{self.api_url}/models/{self.model}:generateContent"
        response = await self._post(client, url, json=self.build_body(prompt, negative_prompt, canvas, params))
        body = response.json()

        candidates = body.get("candidates") if isinstance(body, dict) else None
        if not isinstance(candidates, list) or not candidates:
            raise NoImageReference(f"{self.name}: response had no candidates")
        content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            raise NoImageReference(f"{self.name}: first candidate carried no content parts")
        for part in parts:
            if not isinstance(part, dict):
                continue
            inline = part.get("inlineData") or part.get("inline_data")
            if isinstance(inline, dict) and inline.get("data"):
                return base64.b64decode(inline["data"])
            ref = extract_image_reference(part)
            if ref is not None:
                return await resolve_image_reference(client, ref)
        raise NoImageReference(f"{self.name}: response carried no image part")


class TextToImageAdapter(ProviderAdapter):
    name = "hf-text-to-image"
    capability = ProviderCapability.TEXT_TO_IMAGE

    def __init__(
        self,
        api_url: str = HF_INFERENCE_URL,
        api_key: str = HF_TOKEN,
        model: str = TEXT_TO_IMAGE_MODEL,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        super().__init__(api_url, api_key, model, timeout)

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["Accept"] = "image/png"
        return headers

    def build_body(self, prompt: str, negative_prompt: str, canvas: Canvas, params: GenerationParams) -> dict[str, Any]:
        parameters: dict[str, Any] = {
            "negative_prompt": negative_prompt,
            "num_inference_steps": params.step_count,
            "guidance_scale": params.guidance_scale,
            "width": canvas.width,
            "height": canvas.height,
        }
        if params.seed is not None:
            parameters["seed"] = params.seed
        return {"inputs": prompt, "parameters": parameters}

    async def _generate(self, client, prompt, negative_prompt, canvas, mask, params) -> bytes:
        url = f"{self.api_url}/models/{self.model}"
        response = await self._post(client, url, json=self.build_body(prompt, negative_prompt, canvas, params))

        if response.headers.get("content-type", "").startswith("image/"):
            return response.content

        body = response.json()
        if isinstance(body, list):
            body = body[0] if body else None
        ref = extract_image_reference(body)
        if ref is None:
            raise NoImageReference(f"{self.name}: no image in response")
        return await resolve_image_reference(client, ref)


# --------------------------------------------------------------------------- #
# Provider set                                                                 #
# --------------------------------------------------------------------------- #

@dataclass
class ProviderSet:
    masked_inpaint: Optional[ProviderAdapter] = None
    reference_conditioned: Optional[ProviderAdapter] = None
    text_to_image: Optional[ProviderAdapter] = None

    def for_capability(self, capability: ProviderCapability) -> Optional[ProviderAdapter]:
        """Return the configured adapter for a capability, or None when it has no credentials."""
        adapter = {
            ProviderCapability.MASKED_INPAINT: self.masked_inpaint,
            ProviderCapability.REFERENCE_CONDITIONED: self.reference_conditioned,
            ProviderCapability.TEXT_TO_IMAGE: self.text_to_image,
        }[ProviderCapability(capability)]
        if adapter is None or not adapter.available:
            return None
        return adapter

    def status(self) -> dict[str, Any]:
        return {
            capability.value: (adapter.name if adapter is not None else None)
            for capability in ProviderCapability
            for adapter in [self.for_capability(capability)]
        }


def create_default_adapters() -> ProviderSet:
    return ProviderSet(
        masked_inpaint=MaskedInpaintAdapter(),
        reference_conditioned=ReferenceConditionedAdapter(),
        text_to_image=TextToImageAdapter(),
    )

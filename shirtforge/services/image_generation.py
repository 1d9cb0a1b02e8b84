from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import asdict, dataclass
from typing import Any, Protocol, Sequence
from urllib.parse import quote, urlencode

import httpx

from shirtforge.config import settings
from shirtforge.pacing import RequestPacer
from shirtforge.services.image_processing import to_data_url
from shirtforge.services.positioning import aspect_ratio_dimensions

logger = logging.getLogger(__name__)

POLLINATIONS_BASE_URL = "https://image.pollinations.ai/prompt"
HUGGINGFACE_INFERENCE_URL = "https://api-inference.huggingface.co/models"
STOCK_IMAGE_IDS = (237, 1024, 433, 225, 348, 164, 582, 139, 420, 274)
MAX_DESIGNS_PER_GENERATION = 10

_STOP_WORDS = {"with", "and", "the", "that", "this", "from", "for"}
_STOCK_STOP_WORDS = _STOP_WORDS | {"stock", "image"}

_GENERATED_ADJECTIVES = ("Creative", "Artistic", "Modern", "Vibrant", "Abstract", "Bold", "Elegant", "Dynamic")
_GENERATED_NOUNS = ("Design", "Art", "Creation", "Masterpiece", "Vision", "Expression")
_STOCK_ADJECTIVES = ("Curated", "Classic", "Premium", "Stylish", "Trendy", "Modern", "Elegant", "Artistic")
_STOCK_NOUNS = ("Collection", "Design", "Style", "Pattern", "Template", "Artwork")

_POLLINATIONS_VARIATIONS = (
    "",
    ", artistic style",
    ", creative design",
    ", vibrant colors",
    ", modern style",
    ", detailed artwork",
)
_PRINT_VARIATIONS = (
    "{prompt}, high quality t-shirt design, vector art style, clean background",
    "{prompt}, artistic print design, bold colors, high contrast",
    "{prompt}, vibrant t-shirt graphic, modern design, crisp details",
    "{prompt}, detailed illustration for apparel, professional quality",
    "{prompt}, contemporary design, minimalist style, print-ready artwork",
)


class ImageGenerationError(RuntimeError):
    pass


@dataclass(frozen=True)
class Design:
    id: str
    image_url: str
    title: str
    prompt: str
    original_prompt: str | None = None
    shape: str = "square"
    aspect_ratio: str = "1:1"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        return {
            "id": data["id"],
            "imageUrl": data["image_url"],
            "title": data["title"],
            "prompt": data["prompt"],
            "originalPrompt": data["original_prompt"],
            "shape": data["shape"],
            "aspectRatio": data["aspect_ratio"],
        }


def generate_title(
    prompt: str,
    index: int,
    *,
    adjectives: Sequence[str] = _GENERATED_ADJECTIVES,
    nouns: Sequence[str] = _GENERATED_NOUNS,
    stop_words: set[str] = _STOP_WORDS,
) -> str:
    adjective = adjectives[index % len(adjectives)]
    meaningful = [word for word in prompt.lower().split(" ") if len(word) > 3 and word not in stop_words]
    if meaningful:
        return f"{adjective} {meaningful[0].capitalize()}"
    return f"{adjective} {nouns[index % len(nouns)]}"


def enhance_prompt_for_shape(prompt: str, shape: str) -> str:
    if shape in ("square", "rectangle"):
        return prompt
    return f"{prompt}, {shape} shaped composition, centered subject, plain white background"


def _batch_stamp() -> int:
    return int(time.time() * 1000)


class ImageGenerator(Protocol):
    source: str

    async def generate(
        self,
        prompt: str,
        *,
        count: int,
        shape: str = "square",
        aspect_ratio: str = "1:1",
    ) -> list[Design]: ...


class StockImageGenerator:
    source = "stock"

    async def generate(
        self,
        prompt: str,
        *,
        count: int,
        shape: str = "square",
        aspect_ratio: str = "1:1",
    ) -> list[Design]:
        stamp = _batch_stamp()
        return [
            Design(
                id=f"stock-{stamp}-{index}",
                image_url=f"https://picsum.photos/id/{STOCK_IMAGE_IDS[index % len(STOCK_IMAGE_IDS)]}/512/512",
                title=generate_title(
                    prompt,
                    index,
                    adjectives=_STOCK_ADJECTIVES,
                    nouns=_STOCK_NOUNS,
                    stop_words=_STOCK_STOP_WORDS,
                ),
                prompt=f"Stock design inspired by: {prompt}",
                original_prompt=prompt,
                shape=shape,
                aspect_ratio=aspect_ratio,
            )
            for index in range(count)
        ]


class PollinationsGenerator:
    """Builds Pollinations image URLs; the service renders lazily when the URL is fetched."""

    source = "pollinations"

    def __init__(self, *, pacer: RequestPacer | None = None, rng: random.Random | None = None) -> None:
        self._pacer = pacer or RequestPacer(interval_seconds=0.5)
        self._rng = rng or random.Random()

    def build_url(self, prompt: str, *, width: int, height: int, seed: int) -> str:
        params = urlencode(
            {
                "width": str(width),
                "height": str(height),
                "seed": str(seed),
                "enhance": "true",
                "nologo": "true",
            }
        )
        return f"{POLLINATIONS_BASE_URL}/{quote(prompt, safe='')}?{params}"

    async def generate(
        self,
        prompt: str,
        *,
        count: int,
        shape: str = "square",
        aspect_ratio: str = "1:1",
    ) -> list[Design]:
        width, height = aspect_ratio_dimensions(aspect_ratio, 1024)
        stamp = _batch_stamp()
        base_prompt = enhance_prompt_for_shape(prompt, shape)
        designs: list[Design] = []
        self._pacer.reset()
        for index in range(count):
            await self._pacer.wait()
            enhanced = f"{base_prompt}{_POLLINATIONS_VARIATIONS[index % len(_POLLINATIONS_VARIATIONS)]}"
            designs.append(
                Design(
                    id=f"pollinations_{stamp}_{index}",
                    image_url=self.build_url(
                        enhanced,
                        width=width,
                        height=height,
                        seed=self._rng.randrange(1_000_000),
                    ),
                    title=f"{prompt} Design {index + 1}",
                    prompt=enhanced,
                    original_prompt=prompt,
                    shape=shape,
                    aspect_ratio=aspect_ratio,
                )
            )
        logger.info("Generated Pollinations designs", extra={"count": len(designs)})
        return designs


class HuggingFaceGenerator:
    source = "huggingface"

    def __init__(
        self,
        *,
        token: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token if token is not None else settings.HUGGINGFACE_API_TOKEN
        self._model = model or settings.HUGGINGFACE_MODEL
        self._timeout = timeout if timeout is not None else settings.IMAGE_REQUEST_TIMEOUT_SECONDS
        self._transport = transport

    async def _text_to_image(self, client: httpx.AsyncClient, prompt: str, *, width: int, height: int) -> str:
        response = await client.post(
            f"{HUGGINGFACE_INFERENCE_URL}/{self._model}",
            json={
                "inputs": prompt,
                "parameters": {
                    "guidance_scale": 9.0,
                    "num_inference_steps": 50,
                    "width": width,
                    "height": height,
                },
            },
            headers={"Authorization": f"Bearer {self._token}", "Accept": "image/png"},
        )
        if response.status_code >= 400:
            raise ImageGenerationError(
                f"Hugging Face inference failed ({response.status_code}): {response.text[:200]}"
            )
        content_type = response.headers.get("content-type", "image/png").split(";")[0]
        if not content_type.startswith("image/"):
            raise ImageGenerationError(f"Hugging Face returned non-image content: {content_type}")
        return to_data_url(response.content, content_type)

    async def generate(
        self,
        prompt: str,
        *,
        count: int,
        shape: str = "square",
        aspect_ratio: str = "1:1",
    ) -> list[Design]:
        if not self._token:
            raise ImageGenerationError("Hugging Face API token not configured")
        width, height = aspect_ratio_dimensions(aspect_ratio, 1024)
        base_prompt = enhance_prompt_for_shape(prompt, shape)
        prompts = [_PRINT_VARIATIONS[index % len(_PRINT_VARIATIONS)].format(prompt=base_prompt) for index in range(count)]
        stamp = _batch_stamp()
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                image_urls = await asyncio.gather(
                    *(self._text_to_image(client, variant, width=width, height=height) for variant in prompts)
                )
        except httpx.RequestError as exc:
            raise ImageGenerationError(f"Network error while calling Hugging Face: {exc}") from exc
        return [
            Design(
                id=f"generated-{stamp}-{index}",
                image_url=image_url,
                title=generate_title(prompt, index),
                prompt=prompts[index],
                original_prompt=prompt,
                shape=shape,
                aspect_ratio=aspect_ratio,
            )
            for index, image_url in enumerate(image_urls)
        ]


class ImageGenerationService:
    def __init__(self, *, generators: Sequence[ImageGenerator]) -> None:
        self._generators = {generator.source: generator for generator in generators}

    @property
    def sources(self) -> list[str]:
        return sorted(self._generators)

    async def generate(
        self,
        prompt: str,
        *,
        source: str,
        count: int = 3,
        shape: str = "square",
        aspect_ratio: str = "1:1",
    ) -> list[Design]:
        prompt = prompt.strip()[:500]
        if not prompt:
            raise ImageGenerationError("Prompt is required")
        generator = self._generators.get(source)
        if generator is None:
            raise ImageGenerationError(f"Unknown image source: {source}")
        count = max(1, min(count, MAX_DESIGNS_PER_GENERATION))
        try:
            designs = await generator.generate(prompt, count=count, shape=shape, aspect_ratio=aspect_ratio)
        except ImageGenerationError:
            raise
        except Exception as exc:
            logger.exception("Image generation failed", extra={"source": source})
            raise ImageGenerationError(f"Failed to generate images with {source}. Please try again.") from exc
        logger.info("Generated designs", extra={"source": source, "count": len(designs)})
        return designs


def release_designs(designs: Sequence[Design]) -> int:
    """Count superseded designs that held inline image payloads.

    Designs are immutable, so releasing means the caller drops every reference;
    the return value is what was freed for logging.
    """
    released = sum(1 for design in designs if design.image_url.startswith(("data:", "blob:")))
    if released:
        logger.debug("Released inline design images", extra={"count": released})
    return released

"""
Image Generator for comic panels.

This module handles AI image generation for each comic panel using the
OpenRouter API, and stores the results under deterministic file names.
"""

from __future__ import annotations

import io
import os
import re
import asyncio
import httpx
import base64
import hashlib
import logging
import tempfile
from typing import Optional, List, TYPE_CHECKING

from PIL import Image
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

from src.core.config import DEFAULT_IMAGE_MODEL, StorageConfig
from src.core.errors import RenderingFailure
from src.core.models import GenerationOptions, PanelContent
from src.core.prompts import build_panel_image_prompt
from src.core.retry import async_retry

if TYPE_CHECKING:
    from src.core.events import PipelineEventLogger
    from src.core.resources import ResourceManager

_SAFE_FILE_NAME = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9_.-]*$")


class ImageGenerationError(Exception):
    """Raised when a single image generation attempt fails."""
    pass


@dataclass
class ImageConfig:
    """Configuration for image generation via OpenRouter."""

    api_key: str = field(default_factory=lambda: os.getenv("OPENROUTER_API_KEY", ""))
    base_url: str = "https://openrouter.ai/api/v1/chat/completions"

    # Model settings - use a model that supports image output
    model: str = DEFAULT_IMAGE_MODEL  # OpenRouter image-capable model

    aspect_ratio: str = "4:3"
    timeout: float = 120.0
    max_concurrent: int = 4
    use_cache: bool = True

    def validate(self) -> bool:
        """Check if API key is configured."""
        return bool(self.api_key or os.getenv("OPENROUTER_API_KEY", ""))

    def get_api_key(self) -> str:
        """Get the API key."""
        return self.api_key or os.getenv("OPENROUTER_API_KEY", "")


@dataclass
class GeneratedImage:
    """Result of image generation."""
    success: bool
    image_data: Optional[bytes] = None
    error: Optional[str] = None
    prompt_used: Optional[str] = None


def _normalize_image_bytes(raw: bytes) -> bytes:
    """Validate image bytes with PIL and re-encode as PNG.

    AI models may return WebP, JPEG, or other formats regardless of what the
    data-URL header claims.  Re-encoding through PIL guarantees that
    downstream consumers (reportlab / ImageReader) always receive a valid PNG.
    """
    img = Image.open(io.BytesIO(raw))
    img.load()  # force full decode, raises early on corrupt data
    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _write_file_atomic(path: str, data: bytes) -> None:
    directory = os.path.dirname(path)
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


class OpenRouterImageGenerator:
    """Generate images using OpenRouter API with chat completions endpoint.

    Reuses a single httpx.AsyncClient across all requests to avoid
    TCP+TLS handshake overhead per image (~100ms each).
    Call ``close()`` when done generating images.
    """

    def __init__(self, config: ImageConfig, resources: Optional[ResourceManager] = None):
        self.config = config
        self.resources = resources
        self.headers = {
            "Authorization": f"Bearer {config.get_api_key()}",
            "Content-Type": "application/json",
            "HTTP-Referer": "https://github.com/math-comic-generator",
            "X-Title": "Math Comic Generator"
        }
        self._client = httpx.AsyncClient(timeout=config.timeout)
        self._closed = False

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        self._closed = True
        await self._client.aclose()

    async def generate(self, prompt: str) -> GeneratedImage:
        """Generate an image from prompt using chat completions with image modality."""
        if self._closed:
            return GeneratedImage(
                success=False,
                error="HTTP client has been closed; create a new OpenRouterImageGenerator",
            )
        if not self.config.validate():
            return GeneratedImage(
                success=False,
                error="OpenRouter API key not configured. Set OPENROUTER_API_KEY in .env file.",
            )

        payload = {
            "model": self.config.model,
            "messages": [
                {
                    "role": "user",
                    "content": f"Generate an image: {prompt}"
                }
            ],
            "modalities": ["image"],
            "image_generation": {
                "aspect_ratio": self.config.aspect_ratio
            }
        }

        if self.resources is None:
            return await self._request(payload, prompt)
        async with self.resources.api_call():
            return await self._request(payload, prompt)

    async def _request(self, payload: dict, prompt: str) -> GeneratedImage:
        try:
            response = await self._client.post(
                self.config.base_url,
                headers=self.headers,
                json=payload
            )
            response.raise_for_status()

            data = response.json()

            # Extract image from the response
            if data.get("choices"):
                message = data["choices"][0].get("message", {})
                images = message.get("images", [])

                if images:
                    # Get the first image's base64 data URL
                    image_url = images[0].get("image_url", {}).get("url", "")

                    if image_url and "," in image_url:
                        # Parse data URL: "data:image/png;base64,ENCODED_DATA"
                        header, encoded = image_url.split(",", 1)
                        image_bytes = base64.b64decode(encoded)

                        try:
                            image_bytes = _normalize_image_bytes(image_bytes)
                        except Exception as e:
                            logger.error(f"Image validation failed: {e}")
                            return GeneratedImage(
                                success=False,
                                error=f"Image validation failed: {e}",
                            )

                        return GeneratedImage(
                            success=True,
                            image_data=image_bytes,
                            prompt_used=prompt
                        )
                    else:
                        logger.warning(f"Invalid image URL format: {image_url[:100] if image_url else 'empty'}")

            msg_keys = list(data["choices"][0].get("message", {}).keys()) if data.get("choices") else "N/A"
            logger.warning(f"No image in response. Message keys: {msg_keys}")
            return GeneratedImage(
                success=False,
                error="No image in response"
            )

        except httpx.HTTPStatusError as e:
            logger.error(f"API HTTP error: {e.response.status_code} - {e.response.text[:500]}")
            return GeneratedImage(
                success=False,
                error=f"API error: {e.response.status_code} - {e.response.text}"
            )
        except Exception as e:
            logger.error(f"Request exception: {str(e)}", exc_info=True)
            return GeneratedImage(
                success=False,
                error=f"Request failed: {str(e)}"
            )


class PanelImageRenderer:
    """
    Renders one image per comic panel and stores it on disk.

    File names are derived from the panel number and the image prompt, so
    re-rendering the same panel reuses the stored file.
    """

    def __init__(
        self,
        config: ImageConfig,
        storage_config: StorageConfig,
        resources: Optional[ResourceManager] = None,
        events: Optional[PipelineEventLogger] = None,
        generator: Optional[OpenRouterImageGenerator] = None,
    ):
        self.config = config
        self.images_dir = storage_config.images_dir
        self.public_base_url = storage_config.public_base_url.rstrip("/")
        self.events = events
        self.generator = generator or OpenRouterImageGenerator(config, resources)

    async def close(self) -> None:
        await self.generator.close()

    @staticmethod
    def compute_prompt_hash(prompt: str) -> str:
        """Compute MD5 hash of a prompt for cache lookup."""
        return hashlib.md5(prompt.encode()).hexdigest()

    def file_name_for(self, prompt: str, panel_number: int) -> str:
        return f"panel_{panel_number}_{self.compute_prompt_hash(prompt)[:16]}.png"

    def get_image_url(self, file_name: str) -> str:
        return f"{self.public_base_url}/{file_name}"

    def get_image_path(self, file_name: str) -> str:
        """Local path of a stored panel image. Rejects anything that is not a bare file name."""
        if not file_name or ".." in file_name or not _SAFE_FILE_NAME.match(file_name):
            raise ValueError(f"Invalid image file name: {file_name!r}")
        return os.path.join(self.images_dir, file_name)

    def _emit_rendered(self, panel_number: int, cached: bool) -> None:
        if self.events:
            self.events.emit("panel_rendered", stage="images", success=True,
                             panel=panel_number, cached=cached)

    @async_retry(max_attempts=3, backoff_base=2.0, retry_on=(ImageGenerationError,))
    async def _generate_with_retry(self, prompt: str) -> GeneratedImage:
        """Generate a single image, raising on failure so @async_retry can retry."""
        result = await self.generator.generate(prompt)
        if not result.success:
            raise ImageGenerationError(result.error or "Unknown image generation error")
        return result

    async def generate_panel_image(
        self, panel: PanelContent, options: GenerationOptions, panel_number: int
    ) -> str:
        """Render one panel and return its file name."""
        prompt = build_panel_image_prompt(panel, options, panel_number)
        file_name = self.file_name_for(prompt, panel_number)
        path = self.get_image_path(file_name)

        if self.config.use_cache and await asyncio.to_thread(os.path.exists, path):
            logger.info(f"Panel {panel_number}: Cache hit ({file_name})")
            self._emit_rendered(panel_number, cached=True)
            return file_name

        try:
            result = await self._generate_with_retry(prompt)
            await asyncio.to_thread(_write_file_atomic, path, result.image_data)
        except ImageGenerationError as e:
            logger.warning(f"Panel {panel_number}: Image generation failed: {e}")
            raise RenderingFailure(f"第{panel_number}个面板的图片生成失败", panel_number) from e
        except OSError as e:
            logger.error(f"Panel {panel_number}: Could not store image: {e}")
            raise RenderingFailure(f"第{panel_number}个面板的图片保存失败", panel_number) from e

        logger.info(f"Panel {panel_number}: Image generated successfully")
        self._emit_rendered(panel_number, cached=False)
        return file_name

    async def generate_all_panel_images(
        self, panels: List[PanelContent], options: GenerationOptions
    ) -> List[str]:
        """Render all panels concurrently. Output order matches input order.

        The first failure cancels the panels still in flight and is re-raised,
        so a comic is either fully rendered or not at all.
        """
        semaphore = asyncio.Semaphore(self.config.max_concurrent)
        logger.info(f"Starting image generation for {len(panels)} panels (max {self.config.max_concurrent} concurrent)")

        async def _generate_one(panel_number: int, panel: PanelContent) -> str:
            async with semaphore:
                return await self.generate_panel_image(panel, options, panel_number)

        tasks = [
            asyncio.create_task(_generate_one(number, panel))
            for number, panel in enumerate(panels, start=1)
        ]
        try:
            file_names = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        logger.info(f"Image generation complete: {len(file_names)}/{len(panels)} panels")
        return list(file_names)

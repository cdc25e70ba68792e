"""Image retrieval for the viewer: local files, data URIs and remote URLs.

Remote images go through :class:`ResilientImageLoader`. The first attempt
behaves like a browser's anonymous CORS request: it sends an ``Origin``
header and only accepts the image if the server grants access. The
fallback attempt is a plain GET whose pixels are treated as restricted.
"""
from __future__ import annotations

import base64
import binascii
import logging
import os
import re
from concurrent.futures import ThreadPoolExecutor
from io import BytesIO
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import unquote, urlparse

import numpy as np
import requests
from PIL import Image, UnidentifiedImageError

from ..core.exceptions import ImageLoadFailure
from ..core.image_loader import CrossOriginMode, LoadedImage, ResilientImageLoader, StateListener
from .http_client import Dispatch, call_now

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; PatchScope/1.0)"
DATA_URI_RE = re.compile(r'^data:(?P<mime>[\w/+.-]+)?(?P<b64>;base64)?,(?P<data>.*)$', re.DOTALL)
SUPPORTED_IMAGE_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.gif', '.bmp', '.webp')


def is_remote(source: str) -> bool:
    return urlparse(source).scheme in ('http', 'https')


def decode_image(data: bytes, source: str) -> Image.Image:
    """Decode raster bytes into an RGB PIL image."""
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ImageLoadFailure(f"Could not decode image from {source}: {e}")
    if image.mode != "RGB":
        image = image.convert("RGB")
    return image


def decode_data_uri(uri: str) -> bytes:
    match = DATA_URI_RE.match(uri)
    if not match:
        raise ImageLoadFailure("Malformed data URI")
    payload = match.group("data")
    if match.group("b64"):
        try:
            return base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as e:
            raise ImageLoadFailure(f"Invalid base64 image data: {e}")
    return unquote(payload).encode("latin-1")


def to_rgb_array(image: Image.Image) -> np.ndarray:
    """PIL image to an HxWx3 uint8 array."""
    return np.asarray(image.convert("RGB"), dtype=np.uint8)


class ImageService:
    """Fetches images and drives their load-state machines."""

    def __init__(self, timeout: float = 20, origin: str = "http://localhost",
                 session: Optional[requests.Session] = None,
                 executor: Optional[ThreadPoolExecutor] = None,
                 dispatch: Dispatch = call_now):
        self.timeout = timeout
        self.origin = origin
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", USER_AGENT)
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="patchscope-img")
        self._dispatch = dispatch

    # ----------------------------------------------------------------- fetch

    def fetch(self, source: str, mode: CrossOriginMode = CrossOriginMode.ANONYMOUS) -> LoadedImage:
        """Fetch and decode one image. Raises ImageLoadFailure on any problem."""
        if source.startswith("data:"):
            return LoadedImage(source, decode_image(decode_data_uri(source), "data URI"), pixel_access=True)

        if not is_remote(source):
            path = Path(source[7:] if source.startswith("file://") else source)
            try:
                data = path.read_bytes()
            except OSError as e:
                raise ImageLoadFailure(f"Cannot read {path}: {e}")
            return LoadedImage(str(path), decode_image(data, str(path)), pixel_access=True)

        headers = {}
        if mode is CrossOriginMode.ANONYMOUS:
            headers["Origin"] = self.origin

        try:
            response = self._session.get(source, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise ImageLoadFailure(f"Request for {source} failed: {e}")

        if not response.ok:
            raise ImageLoadFailure(f"Failed to fetch image: {response.status_code}")

        if mode is CrossOriginMode.ANONYMOUS:
            allowed = response.headers.get("Access-Control-Allow-Origin")
            if allowed not in ("*", self.origin):
                raise ImageLoadFailure(f"Cross-origin access to {source} not granted")

        content_type = response.headers.get("Content-Type")
        image = decode_image(response.content, source)
        return LoadedImage(
            source,
            image,
            pixel_access=mode is CrossOriginMode.ANONYMOUS,
            content_type=content_type,
        )

    # ------------------------------------------------------------------ load

    def load(self, source: str, on_change: Optional[StateListener] = None) -> ResilientImageLoader:
        """Create and start a loader whose attempts run on the worker pool."""
        loader_ref = {}

        def request_attempt(src: str, mode: CrossOriginMode) -> None:
            future = self._executor.submit(self.fetch, src, mode)
            future.add_done_callback(lambda f: self._deliver(loader_ref["loader"], f))

        loader = ResilientImageLoader(source, request_attempt, on_change)
        loader_ref["loader"] = loader
        loader.start()
        return loader

    def _deliver(self, loader: ResilientImageLoader, future) -> None:
        if future.cancelled():
            self._dispatch(loader.handle_error, ImageLoadFailure("Image request cancelled"))
            return
        error = future.exception()
        if error is not None:
            self._dispatch(loader.handle_error, error)
        else:
            self._dispatch(loader.handle_load, future.result())

    # -------------------------------------------------------------- download

    def download(self, source: str, destination_dir: str, filename: str) -> Path:
        """Save an image (URL, data URI or file) to ``destination_dir/filename`` as PNG."""
        loaded = self.fetch(source, CrossOriginMode.NONE)
        os.makedirs(destination_dir, exist_ok=True)
        target = Path(destination_dir) / filename
        if target.suffix.lower() != ".png":
            target = target.with_suffix(".png")
        loaded.image.save(target, format="PNG")
        logger.info(f"Saved {filename} to {target}")
        return target

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
        self._session.close()

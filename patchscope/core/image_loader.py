"""Load-state machine for remote images with a single relaxed-mode retry.

The first attempt asks for the image in anonymous cross-origin mode so the
decoded pixels may be read back (overlay export, sampling). If that fails
the loader retries once as a plain request: the image can still be shown,
but pixel access is flagged as restricted. A second failure is terminal.

The loader does no I/O itself. It calls ``request_attempt(source, mode)``
and expects the caller to report back through :meth:`handle_load` or
:meth:`handle_error`, typically from the UI thread after a worker finishes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)


class ImageLoadState(Enum):
    LOADING = "loading"
    RETRYING_STRICT = "retrying_strict"
    LOADED_RELAXED = "loaded_relaxed"
    LOADED_STRICT = "loaded_strict"
    FAILED = "failed"


TERMINAL_STATES = frozenset({
    ImageLoadState.LOADED_RELAXED,
    ImageLoadState.LOADED_STRICT,
    ImageLoadState.FAILED,
})


class CrossOriginMode(Enum):
    """How an attempt negotiates cross-origin access."""
    ANONYMOUS = "anonymous"
    NONE = "none"


@dataclass(slots=True)
class LoadedImage:
    source: str
    image: Any  # PIL.Image.Image
    pixel_access: bool
    content_type: Optional[str] = None

    @property
    def size(self):
        return self.image.size


PLACEHOLDER_TITLE = "Image unavailable"
PLACEHOLDER_DETAIL = "Unable to load from source"

AttemptRequester = Callable[[str, CrossOriginMode], None]
StateListener = Callable[["ResilientImageLoader"], None]


class ResilientImageLoader:
    """Per-image load lifecycle: LOADING -> (RETRYING_STRICT) -> terminal."""

    MAX_ATTEMPTS = 2

    def __init__(self, source: str, request_attempt: AttemptRequester,
                 on_change: Optional[StateListener] = None):
        self.source = source
        self._request_attempt = request_attempt
        self._listeners: List[StateListener] = [on_change] if on_change else []
        self._state = ImageLoadState.LOADING
        self._attempts = 0
        self._image: Optional[LoadedImage] = None
        self._errors: List[BaseException] = []

    @property
    def state(self) -> ImageLoadState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def image(self) -> Optional[LoadedImage]:
        return self._image

    @property
    def errors(self) -> List[BaseException]:
        return list(self._errors)

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    @property
    def is_loaded(self) -> bool:
        return self._state in (ImageLoadState.LOADED_RELAXED, ImageLoadState.LOADED_STRICT)

    @property
    def pixel_access(self) -> bool:
        return self._state is ImageLoadState.LOADED_RELAXED

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def start(self) -> None:
        """Issue the first attempt. Repeated calls are ignored."""
        if self._attempts:
            return
        self._issue(CrossOriginMode.ANONYMOUS)

    def handle_load(self, image: LoadedImage) -> None:
        if self._state is ImageLoadState.LOADING:
            self._image = image
            self._transition(ImageLoadState.LOADED_RELAXED)
        elif self._state is ImageLoadState.RETRYING_STRICT:
            self._image = image
            self._transition(ImageLoadState.LOADED_STRICT)
        else:
            logger.debug(f"Ignoring load event for {self.source} in state {self._state.value}")

    def handle_error(self, error: BaseException) -> None:
        if self.is_terminal:
            logger.debug(f"Ignoring error event for {self.source} in state {self._state.value}")
            return

        self._errors.append(error)
        if self._state is ImageLoadState.LOADING and self._attempts < self.MAX_ATTEMPTS:
            logger.info(f"Anonymous load of {self.source} failed ({error}); retrying without cross-origin mode")
            self._transition(ImageLoadState.RETRYING_STRICT)
            self._issue(CrossOriginMode.NONE)
        else:
            logger.warning(f"Image {self.source} unavailable after {self._attempts} attempts: {error}")
            self._transition(ImageLoadState.FAILED)

    def _issue(self, mode: CrossOriginMode) -> None:
        self._attempts += 1
        try:
            self._request_attempt(self.source, mode)
        except Exception as e:
            # A requester that fails synchronously counts as a failed attempt
            self.handle_error(e)

    def _transition(self, new_state: ImageLoadState) -> None:
        old_state = self._state
        self._state = new_state
        logger.debug(f"Image {self.source}: {old_state.value} -> {new_state.value}")
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error(f"Image state listener failed: {e}", exc_info=True)

"""TTL cache for the trained model bundle, owned by the orchestrator."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional

from ..data.store import load_model_bundle
from ..ml.bundle import ModelBundle

logger = logging.getLogger(__name__)

BundleLoader = Callable[[], Awaitable[ModelBundle]]


class ModelCache:
    """
    Holds one loaded ModelBundle for ``ttl`` seconds.

    The owner calls ``invalidate()`` after every successful update so the
    next ``get()`` reloads through ``loader``.

    Args:
        loader: Coroutine function returning a ModelBundle
        ttl: Seconds a loaded bundle stays valid
        clock: Monotonic time source
    """

    def __init__(self, loader: BundleLoader, ttl: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self._loader = loader
        self.ttl = ttl
        self._clock = clock
        self._bundle: Optional[ModelBundle] = None
        self._loaded_at = 0.0
        self.hits = 0
        self.misses = 0
        self.invalidations = 0

    @classmethod
    def for_bundle(cls, bundle: ModelBundle, ttl: float = 300.0) -> "ModelCache":
        """Cache whose loader always returns the given in-memory bundle."""

        async def loader() -> ModelBundle:
            return bundle

        return cls(loader, ttl=ttl)

    @classmethod
    def from_file(cls, file_path: str, ttl: float = 300.0) -> "ModelCache":
        async def loader() -> ModelBundle:
            return await asyncio.to_thread(load_model_bundle, file_path)

        return cls(loader, ttl=ttl)

    @property
    def is_warm(self) -> bool:
        return self._bundle is not None and (self._clock() - self._loaded_at) < self.ttl

    async def get(self) -> ModelBundle:
        if self.is_warm:
            self.hits += 1
            return self._bundle
        self.misses += 1
        self._bundle = await self._loader()
        self._loaded_at = self._clock()
        logger.debug("Model cache loaded a bundle")
        return self._bundle

    def peek(self) -> Optional[ModelBundle]:
        """Currently cached bundle, even if expired; never loads."""
        return self._bundle

    def invalidate(self) -> None:
        self._bundle = None
        self.invalidations += 1

    def stats(self) -> Dict[str, int]:
        return {"hits": self.hits, "misses": self.misses, "invalidations": self.invalidations}

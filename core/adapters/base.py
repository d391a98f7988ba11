"""
Shared model capability contract.

Both inference engines are opaque native capabilities. This module defines
the part they share: loading and unloading a model given its file path.

Rules:
- All methods are blocking; callers run them on a worker pool.
- Model files are opaque blobs passed by path.
- Adapters never decide WHEN to load or unload (ModelLifecycleManager does).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class ModelCapability(ABC):
    """Load/unload half of an inference capability."""

    @abstractmethod
    def load_model(self, path: str) -> Any:
        """
        Load a model and return an opaque handle.

        Raises:
            errors.LoadError if the file is corrupt or incompatible.
            MemoryError if the engine could not allocate the model.
        """
        raise NotImplementedError

    @abstractmethod
    def unload_model(self, handle: Any) -> None:
        """Free everything held by the handle. Must not raise."""
        raise NotImplementedError

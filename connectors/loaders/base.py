"""
Loader plugin contract shared by every data provider.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional
import time

from schemas.connector import ResourceConfig
from schemas.loader import AuthInfo, FetchBatch, ResourceInfo, TokenPair


class Deadline:
    """Monotonic time budget for one fetch call. ``None`` means unbounded."""

    def __init__(self, max_duration_ms: Optional[int] = None):
        self.max_duration_ms = max_duration_ms
        self._start = time.monotonic()

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._start) * 1000)

    @property
    def remaining_ms(self) -> Optional[int]:
        if self.max_duration_ms is None:
            return None
        return max(self.max_duration_ms - self.elapsed_ms, 0)

    def expired(self) -> bool:
        return self.max_duration_ms is not None and self.elapsed_ms >= self.max_duration_ms


class DataLoader(ABC):
    """
    Abstract base class for all data providers.

    Responsibilities:
    - Authentication (consent URL, code exchange, token accessors)
    - Resource discovery and introspection
    - Resumable, duration-bounded record fetching

    Checkpoints (``sync_context``) are opaque to everything but the loader
    that produced them. ``fetch`` never mutates the checkpoint it is given;
    every yielded FetchBatch carries a fresh one.
    """

    # Example loader_config shown to administrators
    example_config: Dict[str, Any] = {}
    # Hidden loaders need code-level hooks and cannot be registered from the API
    is_hidden: bool = False

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = dict(config or {})
        self._token_pair = TokenPair()

    @abstractmethod
    async def authenticate(self, redirect_to: str, user_id: Optional[str] = None) -> AuthInfo:
        """Begin an auth flow; no-auth providers return ``success=True``."""
        pass

    @abstractmethod
    async def continue_to_authenticate(self, code: str, redirect_to: str) -> None:
        """Exchange a provider code for a token pair."""
        pass

    def get_token_pair(self) -> TokenPair:
        return self._token_pair

    def set_token_pair(self, token_pair: Optional[TokenPair]) -> None:
        self._token_pair = token_pair or TokenPair()

    @abstractmethod
    async def get_available_resource_names(self) -> List[str]:
        pass

    @abstractmethod
    async def get_resource_info(self, resource_name: str) -> ResourceInfo:
        pass

    @abstractmethod
    def fetch(
        self,
        resources: List[ResourceConfig],
        sync_context: Optional[Dict[str, Any]] = None,
        last_synced_at: Optional[datetime] = None,
        max_duration_ms: Optional[int] = None,
    ) -> AsyncIterator[FetchBatch]:
        """
        Yield batches of records starting from ``sync_context``.

        Args:
            resources: Resources to fetch, in order
            sync_context: Checkpoint returned by a previous call (or empty)
            last_synced_at: Completion time of the last full pass, for incremental filters
            max_duration_ms: Time budget; when exceeded the last batch has ``has_more=True``

        Yields:
            FetchBatch values; the final one's ``has_more`` is authoritative
        """
        pass

    async def close(self) -> None:
        """Release provider resources (connections, clients)."""
        return None

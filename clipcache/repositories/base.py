"""Base repository interface."""

from abc import ABC, abstractmethod
from typing import Generic, TypeVar, Optional, List

T = TypeVar('T')
K = TypeVar('K')


class Repository(ABC, Generic[K, T]):
    """
    Base repository interface.

    Abstracts data access - in-memory registries and on-disk caches
    share the same shape so services can be tested against fakes.
    """

    @abstractmethod
    def get(self, key: K) -> Optional[T]:
        """Get entity by key."""
        pass

    @abstractmethod
    def list(self) -> List[T]:
        """List all entities."""
        pass

    @abstractmethod
    def delete(self, key: K) -> bool:
        """Delete entity by key. Returns True if deleted, False if not found."""
        pass

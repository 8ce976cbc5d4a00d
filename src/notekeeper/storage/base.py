"""Base repository interface for notekeeper storage."""
from abc import ABC, abstractmethod
from typing import Generic, List, Optional, TypeVar

T = TypeVar("T")


class Repository(ABC, Generic[T]):
    """Abstract CRUD repository over one kind of domain object."""

    @abstractmethod
    def create(self, item: T) -> T:
        """Persist a new item and return it."""

    @abstractmethod
    def get(self, id: str) -> Optional[T]:
        """Get an item by ID, or None if it does not exist."""

    @abstractmethod
    def get_all(self) -> List[T]:
        """Get every stored item."""

    @abstractmethod
    def update(self, item: T) -> T:
        """Persist changes to an existing item."""

    @abstractmethod
    def delete(self, id: str) -> None:
        """Delete an item by ID."""

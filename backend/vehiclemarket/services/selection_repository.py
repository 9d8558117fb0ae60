"""
Client-local quote-builder selections.

A party's browser-local cache holds the vehicles picked in the quote builder
and, per conversation, the items being negotiated. The negotiation core never
touches that storage directly; it receives a SelectionRepository instead.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from vehiclemarket.schemas.negotiation import Bucket, LineItem
from vehiclemarket.services.bucket_aggregator import filter_for_seller, group_buckets

logger = logging.getLogger(__name__)

QUOTE_BUILDER_KEY = "quoteBuilderItems"


def negotiation_items_key(conversation_id: str) -> str:
    return f"negotiationItems_{conversation_id}"


class SelectionRepository(Protocol):
    """What the negotiation core needs from the local selection cache."""

    def get_selected_buckets(self, conversation_id: str, seller_id: Optional[str]) -> List[Bucket]:
        ...

    def get_negotiation_items(self, conversation_id: str) -> List[LineItem]:
        ...

    def save_negotiation_items(self, conversation_id: str, items: List[LineItem]) -> None:
        ...


class KeyValueSelectionRepository(ABC):
    """
    SelectionRepository over a string-keyed JSON store.

    Subclasses provide ``_read`` and ``_write``; unreadable entries are
    treated as empty, the way a browser cache is.
    """

    @abstractmethod
    def _read(self, key: str) -> Any:
        ...

    @abstractmethod
    def _write(self, key: str, value: Any) -> None:
        ...

    def _read_items(self, key: str) -> List[LineItem]:
        raw = self._read(key)
        if not raw:
            return []
        try:
            return [LineItem.model_validate(entry) for entry in raw]
        except (TypeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable selection cache entry {key}: {e}")
            return []

    def _write_items(self, key: str, items: List[LineItem]) -> None:
        self._write(key, [item.model_dump(mode="json") for item in items])

    # Quote builder

    def get_quote_builder_items(self) -> List[LineItem]:
        return self._read_items(QUOTE_BUILDER_KEY)

    def set_quote_builder_items(self, items: List[LineItem]) -> None:
        self._write_items(QUOTE_BUILDER_KEY, items)

    def add_to_quote_builder(self, item: LineItem) -> None:
        """Add or replace an item in the quote builder."""
        items = [i for i in self.get_quote_builder_items() if i.id != item.id]
        items.append(item)
        self.set_quote_builder_items(items)

    # Conversation scope

    def get_negotiation_items(self, conversation_id: str) -> List[LineItem]:
        return self._read_items(negotiation_items_key(conversation_id))

    def save_negotiation_items(self, conversation_id: str, items: List[LineItem]) -> None:
        self._write_items(negotiation_items_key(conversation_id), items)

    def scope_to_conversation(
        self,
        conversation_id: str,
        seller_id: Optional[str],
        seller_company: Optional[str] = None
    ) -> List[LineItem]:
        """
        Move one seller's quote-builder items into a conversation.

        The seller's items become the conversation's negotiation items and
        leave the shared quote builder.

        Returns:
            The items now scoped to the conversation
        """
        items = self.get_quote_builder_items()
        scoped = [
            i for i in items
            if (seller_id and i.seller_id == seller_id)
            or (seller_company and i.seller_company == seller_company)
        ]
        if not scoped:
            return self.get_negotiation_items(conversation_id)

        self.save_negotiation_items(conversation_id, scoped)
        scoped_ids = {i.id for i in scoped}
        self.set_quote_builder_items([i for i in items if i.id not in scoped_ids])
        return scoped

    def get_selected_buckets(self, conversation_id: str, seller_id: Optional[str]) -> List[Bucket]:
        """
        Buckets being negotiated in a conversation.

        Uses the conversation's scoped items, falling back to the seller's
        items still in the quote builder.
        """
        items = self.get_negotiation_items(conversation_id)
        if not items:
            items = filter_for_seller(self.get_quote_builder_items(), seller_id)
        return group_buckets(items)


class InMemorySelectionRepository(KeyValueSelectionRepository):
    """Selections held in a dict."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self.data: Dict[str, Any] = data if data is not None else {}

    def _read(self, key: str) -> Any:
        return self.data.get(key)

    def _write(self, key: str, value: Any) -> None:
        self.data[key] = value


class JsonFileSelectionRepository(KeyValueSelectionRepository):
    """Selections persisted to one JSON file, one top-level key per entry."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text(encoding="utf-8")) or {}
        except json.JSONDecodeError as e:
            logger.warning(f"Selection cache {self.path} is corrupt, starting empty: {e}")
            return {}

    def _read(self, key: str) -> Any:
        return self._load().get(key)

    def _write(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")

"""
Card Store

Owns the persisted card list (cards.json). Every mutation is a full
read-modify-write of the JSON record and runs under a single asyncio.Lock,
so interleaved captures can never drop each other's entries.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Union

from pydantic import ValidationError

from ..schemas import Card

logger = logging.getLogger(__name__)

DEFAULT_CARDS_CAP = 20


class CardStore:
    """Persisted, capped, most-recent-first list of cards."""

    def __init__(self, cards_dir: Path, cap: int = DEFAULT_CARDS_CAP):
        self.cards_dir = Path(cards_dir)
        self.cards_json_path = self.cards_dir / "cards.json"
        self.cap = cap
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Raw persistence (call only while holding the lock)
    # ------------------------------------------------------------------

    def _read(self) -> List[Card]:
        try:
            raw = self.cards_json_path.read_text(encoding="utf-8")
            items = json.loads(raw)
        except FileNotFoundError:
            return []
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"cards.json unreadable, treating as empty: {e}")
            return []

        cards: List[Card] = []
        for item in items if isinstance(items, list) else []:
            try:
                cards.append(Card.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping malformed card entry: {e}")
        return cards

    def _write(self, cards: List[Card]) -> None:
        self.cards_dir.mkdir(parents=True, exist_ok=True)
        payload = [card.model_dump(by_alias=True) for card in cards]
        tmp_path = self.cards_json_path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        tmp_path.replace(self.cards_json_path)

    def _normalise(self, cards: List[Card]) -> List[Card]:
        """Drop duplicate ids (first wins) and enforce the cap."""
        seen = set()
        unique: List[Card] = []
        for card in cards:
            if card.id in seen:
                continue
            seen.add(card.id)
            unique.append(card)
        return unique[: self.cap]

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def mutate(self, change: Callable[[List[Card]], Union[Awaitable[List[Card]], List[Card]]]) -> List[Card]:
        """Run one serialised read-modify-write cycle.

        Args:
            change: Receives the current list, returns the next one (may be async)

        Returns:
            The list as persisted
        """
        async with self._lock:
            current = await asyncio.to_thread(self._read)
            result = change(current)
            if asyncio.iscoroutine(result):
                result = await result
            next_cards = self._normalise(result)
            await asyncio.to_thread(self._write, next_cards)
            return next_cards

    async def load(self) -> List[Card]:
        async with self._lock:
            return await asyncio.to_thread(self._read)

    async def prepend(self, card: Card) -> List[Card]:
        next_cards = await self.mutate(lambda cards: [card] + [c for c in cards if c.id != card.id])
        logger.info(f"Card {card.id} stored ({len(next_cards)} cards)")
        return next_cards

    async def update(self, cards: List[Card]) -> List[Card]:
        """Overwrite the list with one supplied by the overlay (positions, locks, sizes)."""
        return await self.mutate(lambda _current: list(cards))

    async def delete(self, card_id: str) -> List[Card]:
        removed: Optional[Card] = None

        def drop(cards: List[Card]) -> List[Card]:
            nonlocal removed
            removed = next((c for c in cards if c.id == card_id), None)
            return [c for c in cards if c.id != card_id]

        next_cards = await self.mutate(drop)
        if removed is not None:
            try:
                await asyncio.to_thread(Path(removed.file_path).unlink)
            except OSError as e:
                logger.debug(f"Card image {removed.file_path} not removed: {e}")
            logger.info(f"Card {card_id} deleted")
        return next_cards

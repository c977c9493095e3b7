#!/usr/bin/env python3
"""
Card Store Tests

Persistence of cards.json: camelCase on disk, self-healing reads, unique ids
and the cap, serialised mutations.
"""

import asyncio
import json

from ironterm.schemas import Card
from ironterm.services.card_store import CardStore


def card(card_id: str, **overrides) -> Card:
    fields = dict(
        id=card_id,
        file_path=f"/tmp/{card_id}.png",
        file_url=f"file:///tmp/{card_id}.png",
        timestamp="2024-05-01T10:00:00.000Z",
    )
    fields.update(overrides)
    return Card(**fields)


async def test_missing_file_loads_empty(tmp_path):
    store = CardStore(tmp_path / "cards")
    assert await store.load() == []


async def test_corrupt_file_loads_empty_and_is_rewritten(tmp_path):
    store = CardStore(tmp_path / "cards")
    store.cards_dir.mkdir(parents=True)
    store.cards_json_path.write_text("{not json", encoding="utf-8")

    assert await store.load() == []
    cards = await store.prepend(card("a"))
    assert [c.id for c in cards] == ["a"]
    assert json.loads(store.cards_json_path.read_text(encoding="utf-8"))[0]["id"] == "a"


async def test_persists_camel_case_keys(tmp_path):
    store = CardStore(tmp_path / "cards")
    await store.prepend(card("a", locked=True, size="large"))

    on_disk = json.loads(store.cards_json_path.read_text(encoding="utf-8"))[0]
    assert on_disk["filePath"] == "/tmp/a.png"
    assert on_disk["fileUrl"] == "file:///tmp/a.png"
    assert on_disk["locked"] is True
    assert on_disk["size"] == "large"


async def test_malformed_entries_are_skipped(tmp_path):
    store = CardStore(tmp_path / "cards")
    store.cards_dir.mkdir(parents=True)
    good = card("good").model_dump(by_alias=True)
    store.cards_json_path.write_text(json.dumps([{"id": "broken"}, good]), encoding="utf-8")

    assert [c.id for c in await store.load()] == ["good"]


async def test_update_drops_duplicates_and_applies_cap(tmp_path):
    store = CardStore(tmp_path / "cards", cap=3)

    cards = await store.update([card("a"), card("b"), card("a", label="dup"), card("c"), card("d")])

    assert [c.id for c in cards] == ["a", "b", "c"]
    assert cards[0].label == ""


async def test_delete_removes_card_and_image(tmp_path):
    image = tmp_path / "shot.png"
    image.write_bytes(b"png")
    store = CardStore(tmp_path / "cards")
    await store.update([card("a", file_path=str(image)), card("b")])

    cards = await store.delete("a")

    assert [c.id for c in cards] == ["b"]
    assert not image.exists()


async def test_delete_unknown_id_is_noop(tmp_path):
    store = CardStore(tmp_path / "cards")
    await store.update([card("a")])
    assert [c.id for c in await store.delete("zzz")] == ["a"]


async def test_interleaved_mutations_keep_every_card(tmp_path):
    store = CardStore(tmp_path / "cards")

    async def slow_prepend(card_id):
        async def change(cards):
            await asyncio.sleep(0)
            return [card(card_id)] + cards
        return await store.mutate(change)

    await asyncio.gather(*[slow_prepend(f"c{i}") for i in range(5)])

    assert sorted(c.id for c in await store.load()) == [f"c{i}" for i in range(5)]

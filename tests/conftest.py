import asyncio

import pytest

from fake_mongo import FakeDatabase

from game_economy.mongo_collections import PLAYER_STATES


@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def run():
    """Drive a coroutine to completion; service tests are plain sync tests."""
    def _run(coro):
        return asyncio.run(coro)
    return _run


@pytest.fixture
def seed_player(db, run):
    """Insert a current-schema player with the given wallet balance."""
    from game_economy.services.player_state import new_player_state

    def _seed(user_id: str = "u1", rupees: float = 0, **overrides):
        doc = new_player_state(user_id)
        doc["financial"]["rupees"] = rupees
        doc.update(overrides)
        run(db[PLAYER_STATES].insert_one(doc))
        return doc
    return _seed


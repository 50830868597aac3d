import os
import sys
import random
from types import SimpleNamespace

# Ensure project root on path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import pytest


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "casino.db")


class DummyResponse:
    def __init__(self):
        self.sent = []
        self.edited = []
        self._done = False

    def is_done(self):
        return self._done

    async def send_message(self, content=None, **kwargs):
        self._done = True
        self.sent.append({"content": content, **kwargs})

    async def edit_message(self, *args, **kwargs):
        self._done = True
        self.edited.append(kwargs)


class DummyFollowup:
    def __init__(self):
        self.sent = []

    async def send(self, *args, **kwargs):
        self.sent.append(kwargs)


def make_interaction(user_id=42, guild_id=1):
    user = SimpleNamespace(
        id=user_id,
        display_name="tester",
        display_avatar=SimpleNamespace(url="https://cdn.example/avatar.png"),
    )

    async def original_response():
        return SimpleNamespace(id=99)

    return SimpleNamespace(
        user=user,
        guild_id=guild_id,
        channel_id=7,
        command=SimpleNamespace(name="coinflip"),
        response=DummyResponse(),
        followup=DummyFollowup(),
        original_response=original_response,
    )


@pytest.fixture
def interaction():
    return make_interaction()

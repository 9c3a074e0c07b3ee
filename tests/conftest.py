import pytest

from scrobbler.services.models import Account, AudioItem


class RecordingSleep:
    """Stands in for asyncio.sleep and remembers every wait."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)

    @property
    def total(self):
        return sum(self.calls)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def account():
    return Account(user_id="user-1", api_token=Account.encode_token("secret-token"), user_name="alice")


def _make_item(item_id="item-1", **kwargs):
    fields = {"name": "Song", "artists": ["Artist"], "album": "Album"}
    fields.update(kwargs)
    return AudioItem(id=item_id, **fields)


@pytest.fixture
def make_item():
    return _make_item


@pytest.fixture
def item():
    return _make_item()

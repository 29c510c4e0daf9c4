# tests/conftest.py
"""Pytest configuration and fixtures"""
import pytest
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from relaybot.core.engine import Dispatcher, EventKind, InboundEvent  # noqa: E402
from relaybot.infra.memory_session_store import MemorySessionStore  # noqa: E402
from relaybot.infra.metrics import get_metrics_collector  # noqa: E402
from relaybot.transport.dev_transport import DevTransport  # noqa: E402


@pytest.fixture(autouse=True)
def reset_metrics():
    get_metrics_collector().reset()
    yield


@pytest.fixture
def sender_id():
    """Default sender ID for tests"""
    return "1001"


@pytest.fixture
def transport():
    return DevTransport()


@pytest.fixture
def store():
    return MemorySessionStore()


@pytest.fixture
def errors():
    """Collects (error, ctx) pairs reported to the global error handler"""
    return []


@pytest.fixture
def bot(transport, store, errors):
    dispatcher = Dispatcher(transport=transport, session_store=store)

    @dispatcher.catch
    async def record(exc, ctx):
        errors.append((exc, ctx))

    return dispatcher


@pytest.fixture
def message(sender_id):
    """Factory for text events"""
    def _make(text, sender=None, chat_id=None):
        return InboundEvent(
            kind=EventKind.MESSAGE,
            sender_id=sender or sender_id,
            chat_id=chat_id,
            text=text,
            message_id="m1",
        )
    return _make


@pytest.fixture
def action(sender_id):
    """Factory for action (button) events"""
    def _make(payload, sender=None):
        return InboundEvent(
            kind=EventKind.ACTION,
            sender_id=sender or sender_id,
            payload=payload,
            message_id="m2",
            interaction_id=f"ack-{payload}",
        )
    return _make


@pytest.fixture
def sample_telegram_message():
    """Sample Telegram Update with a text message"""
    return {
        "update_id": 500,
        "message": {
            "message_id": 42,
            "from": {"id": 1001, "is_bot": False, "first_name": "Ada"},
            "chat": {"id": 1001, "type": "private"},
            "date": 1700000000,
            "text": "/start@RelayTestBot now",
        },
    }


@pytest.fixture
def sample_telegram_callback():
    """Sample Telegram Update with an inline-button press"""
    return {
        "update_id": 501,
        "callback_query": {
            "id": "cbq-77",
            "from": {"id": 1001, "is_bot": False, "first_name": "Ada"},
            "message": {
                "message_id": 43,
                "chat": {"id": -200, "type": "group"},
                "date": 1700000001,
                "text": "Choose an option:",
            },
            "data": "YES",
        },
    }

import json
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

# Ensure project root is on sys.path so `import paywatch` works when running pytest from root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from paywatch.db.base import Database  # noqa: E402
from paywatch.db.unit_of_work import UnitOfWork  # noqa: E402
from paywatch.emails.config import FilterConfig, LLMConfig, PipelineConfig  # noqa: E402
from paywatch.emails.filter import SenderVerifier  # noqa: E402
from paywatch.emails.gmail_client import MailboxError  # noqa: E402
from paywatch.emails.llm_client import ExtractionClient  # noqa: E402
from paywatch.emails.models import MailboxMessage  # noqa: E402
from paywatch.ingestion.metrics import IngestionMetrics  # noqa: E402
from paywatch.ingestion.pipeline import IngestionPipeline  # noqa: E402
from paywatch.notifications.feed import TransactionFeed  # noqa: E402
from tests.fixtures.sample_emails import gemini_json  # noqa: E402

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def database():
    """Fresh in-memory database with all tables, per test."""
    db = Database(TEST_DB_URL)
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def session_factory(database):
    return database.session_factory


async def create_company(session_factory, **overrides):
    values = {
        "name": "Mama Put Kitchen",
        "company_code": "MAMA01",
        "staff_pin": "4321",
        "owner_id": "owner-1",
        "system_active": True,
        "connected_banks": ["gtbank"],
    }
    values.update(overrides)
    async with UnitOfWork(session_factory) as uow:
        company = await uow.companies.create(**values)
        await uow.commit()
    return company


@pytest_asyncio.fixture
async def company(session_factory):
    return await create_company(session_factory)


class GeminiStub:
    """MockTransport handler that replays canned generateContent responses.

    Each queued item is either a response body dict or an ``httpx.Response``.
    Bodies registered with ``when`` answer any prompt containing the needle;
    otherwise the queue is consumed, then the default body is returned.
    """

    def __init__(self, default: Optional[Dict] = None):
        self.default = default if default is not None else gemini_json(None)
        self.queue: List = []
        self.routes: List = []
        self.requests: List[httpx.Request] = []

    def push(self, *items) -> "GeminiStub":
        self.queue.extend(items)
        return self

    def when(self, needle: str, item) -> "GeminiStub":
        self.routes.append((needle, item))
        return self

    @property
    def prompts(self) -> List[str]:
        return [
            json.loads(r.content)["contents"][0]["parts"][0]["text"] for r in self.requests
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        prompt = json.loads(request.content)["contents"][0]["parts"][0]["text"]
        routed = [item for needle, item in self.routes if needle in prompt]
        if routed:
            item = routed[0]
        else:
            item = self.queue.pop(0) if self.queue else self.default
        if isinstance(item, httpx.Response):
            return item
        return httpx.Response(200, json=item)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def gemini():
    return GeminiStub()


@pytest.fixture
def llm_config():
    return LLMConfig(api_key="test-key", max_retries=0)


@pytest.fixture
def extractor(llm_config, gemini):
    return ExtractionClient(llm_config, transport=gemini.transport())


class FakeMailbox:
    """In-memory stand-in for GmailClient."""

    def __init__(self, messages: Optional[List[MailboxMessage]] = None):
        self.messages: Dict[str, MailboxMessage] = {m.id: m for m in messages or []}
        self.unread = set(self.messages)
        self.broken: set = set()
        self.marked_read: List[str] = []

    async def list_unread_ids(self, limit: Optional[int] = None) -> List[str]:
        ids = [mid for mid in self.messages if mid in self.unread]
        return ids[:limit] if limit else ids

    async def get_message(self, message_id: str) -> MailboxMessage:
        if message_id in self.broken:
            raise MailboxError(f"Gmail GET /messages/{message_id} error: 500")
        return self.messages[message_id]

    async def mark_as_read(self, message_id: str) -> None:
        self.unread.discard(message_id)
        self.marked_read.append(message_id)


@pytest.fixture
def feed():
    return TransactionFeed(max_queue=10)


@pytest.fixture
def metrics():
    return IngestionMetrics()


@pytest.fixture
def make_pipeline(session_factory, extractor, feed, metrics) -> Callable[..., IngestionPipeline]:
    def _make(**overrides) -> IngestionPipeline:
        kwargs = {
            "session_factory": session_factory,
            "verifier": SenderVerifier(FilterConfig()),
            "extractor": extractor,
            "feed": feed,
            "metrics": metrics,
            "config": PipelineConfig(),
        }
        kwargs.update(overrides)
        return IngestionPipeline(**kwargs)

    return _make


@pytest.fixture
def pipeline(make_pipeline):
    return make_pipeline()

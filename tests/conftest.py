"""Shared fixtures: in-memory database, fake clock, fake GitHub remote."""

import os

# Must be set before gitmemo.database builds its module engine
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import datetime, timezone  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from gitmemo.database import build_engine, build_session_factory, init_db  # noqa: E402
from gitmemo.schemas import IssueData, LabelData  # noqa: E402
from gitmemo.services.cache import MemoryStorage, StorageCache  # noqa: E402
from gitmemo.services.github_client import RemoteNotFound  # noqa: E402

OWNER = "octo"
REPO = "memos"

ENV_VARS = (
    "GITHUB_OWNER",
    "GITHUB_REPO",
    "GITHUB_TOKEN",
    "GITHUB_API_URL",
    "GITHUB_WEBHOOK_SECRET",
    "ENCRYPTION_KEY",
    "GITMEMO_PASSWORD",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep a developer's .env from leaking into tests."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FakeRemote:
    """Stands in for GitHubClient; records every call."""

    def __init__(self):
        self.issues: list[IssueData] = []
        self.labels: list[LabelData] = []
        self.calls: list[tuple[str, dict]] = []
        self.error: Exception | None = None
        self.closed = False
        self._next_number = 100

    def _record(self, operation: str, **kwargs) -> None:
        self.calls.append((operation, kwargs))
        if self.error is not None:
            raise self.error

    def calls_to(self, operation: str) -> list[dict]:
        return [kwargs for called, kwargs in self.calls if called == operation]

    async def list_issues(self, owner, repo, page=1, labels=None, since=None):
        self._record("list_issues", owner=owner, repo=repo, page=page, labels=labels, since=since)
        return list(self.issues)

    async def get_issue(self, owner, repo, number):
        self._record("get_issue", number=number)
        for issue in self.issues:
            if issue.number == number:
                return issue
        raise RemoteNotFound(f"GitHub API error 404: issue {number}")

    async def create_issue(self, owner, repo, title, body=None, labels=None):
        self._record("create_issue", title=title, body=body, labels=labels)
        self._next_number += 1
        issue = make_issue(self._next_number, title=title, body=body, labels=labels or [])
        self.issues.append(issue)
        return issue

    async def update_issue(self, owner, repo, number, title=None, body=None, labels=None):
        self._record("update_issue", number=number, title=title, body=body, labels=labels)
        current = next(i for i in self.issues if i.number == number)
        updated = current.model_copy(update={
            "title": title if title is not None else current.title,
            "body": body if body is not None else current.body,
            "labels": [make_label(n) for n in labels] if labels is not None else current.labels,
        })
        self.issues = [updated if i.number == number else i for i in self.issues]
        return updated

    async def list_labels(self, owner, repo):
        self._record("list_labels")
        return list(self.labels)

    async def create_label(self, owner, repo, name, color, description=None):
        self._record("create_label", name=name, color=color, description=description)
        label = LabelData(name=name, color=color, description=description)
        self.labels.append(label)
        return label

    async def close(self):
        self.closed = True


LABEL_COLORS = {"idea": "a2eeef", "todo": "d73a4a", "journal": "0e8a16"}


def make_label(name: str) -> LabelData:
    return LabelData(name=name, color=LABEL_COLORS.get(name, "cccccc"), description=f"{name} label")


def make_issue(number: int, title: str | None = None, body: str | None = None, labels=(), day: int | None = None) -> IssueData:
    return IssueData(
        number=number,
        title=title or f"Memo {number}",
        body=body if body is not None else f"Body of memo {number}",
        labels=[make_label(name) for name in labels],
        github_created_at=datetime(2024, 1, day or min(number, 28), 12, 0, tzinfo=timezone.utc),
    )


@pytest_asyncio.fixture
async def engine():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine):
    async with build_session_factory(engine)() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return StorageCache(storage=MemoryStorage(), clock=clock)


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def client(tmp_path, monkeypatch, remote):
    """TestClient over a temp-file database, with the fake remote injected."""
    from fastapi.testclient import TestClient

    import main
    from gitmemo import database

    monkeypatch.setenv("GITHUB_OWNER", OWNER)
    monkeypatch.setenv("GITHUB_REPO", REPO)
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_test_token")
    monkeypatch.setenv("ENCRYPTION_KEY", "test-encryption-key")
    monkeypatch.setenv("GITHUB_WEBHOOK_SECRET", "test-webhook-secret")
    database.configure_database(f"sqlite+aiosqlite:///{tmp_path / 'gitmemo.db'}")

    main.app.state.cache = StorageCache()
    main.app.state.remote_factory = lambda token: remote

    with TestClient(main.app) as test_client:
        yield test_client

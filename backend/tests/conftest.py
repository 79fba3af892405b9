import base64
import json
import os
import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Read once at import by codepair.core.config.
os.environ.setdefault("ENV", "development")
os.environ.setdefault("ALLOW_UNVERIFIED_JWT_DEV", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("MISSED_SWEEP_INTERVAL_SEC", "0")
os.environ.setdefault("SEED_DEFAULT_QUESTIONS", "true")
os.environ["USE_REDIS_SESSION_STORE"] = "false"
os.environ["QUESTION_STORE_PATH"] = ""
os.environ["IDENTITY_JWT_SECRET"] = ""
os.environ["IDENTITY_VERIFY_URL"] = ""

from codepair.models import Session, SessionStatus  # noqa: E402
from codepair.questions.store import QuestionStore  # noqa: E402
from codepair.services.container import ServiceContainer  # noqa: E402
from codepair.session.state_store import LocalSessionStateStore  # noqa: E402

INTERVIEWER = "interviewer-1"
CANDIDATE = "candidate-1"


def _enc(obj: dict) -> str:
    raw = json.dumps(obj, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def make_dev_jwt(sub: str) -> str:
    header = _enc({"alg": "none", "typ": "JWT"})
    payload = _enc({"sub": sub, "iat": 0})
    return f"{header}.{payload}."


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv("ALLOW_UNVERIFIED_JWT_DEV", "true")


@pytest.fixture
def dev_jwt_token() -> str:
    return make_dev_jwt("pytest-user")


@pytest.fixture
def auth_headers():
    def _headers(sub: str) -> dict:
        return {"Authorization": f"Bearer {make_dev_jwt(sub)}"}

    return _headers


class FakeClock:
    """Manually advanced clock; seconds for monotonic use, ms via ``ms``."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def ms(self) -> int:
        return int(self.now * 1000)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def container() -> ServiceContainer:
    services = ServiceContainer(store=LocalSessionStateStore(), question_store=QuestionStore())
    services.questions.seed_default_questions()
    return services


@pytest.fixture
def make_session():
    def _make(**overrides) -> Session:
        values = {
            "id": "session-1",
            "title": "Backend pairing",
            "start_time": 1_700_000_000_000,
            "stream_call_id": "call-1",
            "candidate_id": CANDIDATE,
            "interviewer_ids": [INTERVIEWER],
            "status": SessionStatus.SCHEDULED,
        }
        values.update(overrides)
        return Session(**values)

    return _make


@pytest.fixture
def dev_jwt_for():
    return make_dev_jwt

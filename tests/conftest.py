"""Pytest configuration and fixtures."""

import os

# Settings are read once at import time
os.environ.setdefault("ENV", "test")
os.environ.setdefault("INIT_DB_ON_STARTUP", "false")

from collections.abc import AsyncGenerator, Callable  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker  # noqa: E402

from postpartum_triage.api.deps import get_ruleset  # noqa: E402
from postpartum_triage.core.security import create_access_token  # noqa: E402
from postpartum_triage.db.init_db import create_tables  # noqa: E402
from postpartum_triage.db.session import (  # noqa: E402
    create_engine,
    get_session_factory,
    make_session_factory,
)
from postpartum_triage.main import app  # noqa: E402
from postpartum_triage.rules.engine import evaluate  # noqa: E402
from postpartum_triage.rules.loader import load_ruleset  # noqa: E402
from postpartum_triage.rules.models import RuleSet  # noqa: E402
from postpartum_triage.schemas.case import CaseMeta, CaseRecord  # noqa: E402
from postpartum_triage.schemas.triage import TriageInput  # noqa: E402
from postpartum_triage.services.case_store import CaseStore  # noqa: E402
from postpartum_triage.services.change_ledger import ChangeLedger  # noqa: E402

RULESET_FILENAME = "postpartum-de-v1.0.0.yaml"

# Every critical input answered, nothing positive
COMPLETE_ANSWERS = {
    "weeks_postpartum": 4,
    "suicidal_ideation_now": False,
    "thoughts_of_harming_baby": False,
    "heavy_bleeding_emergency_pattern": False,
    "depressed_mood_most_days": False,
    "functional_impairment_mental": False,
}


def complete_input(**overrides) -> TriageInput:
    """Answers with every critical input present, updated with overrides."""
    answers = dict(COMPLETE_ANSWERS)
    answers.update(overrides)
    return TriageInput(**answers)


@pytest.fixture(scope="session")
def rules() -> RuleSet:
    """The packaged postpartum ruleset."""
    return load_ruleset(RULESET_FILENAME)


@pytest.fixture
def make_input() -> Callable[..., TriageInput]:
    """Factory for complete questionnaire answers."""
    return complete_input


@pytest.fixture(scope="function")
async def async_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine (WAL), so concurrent writers really contend."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'triage.db'}", busy_timeout=30)
    await create_tables(engine)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return make_session_factory(async_engine)


@pytest.fixture
def ledger(session_factory: async_sessionmaker[AsyncSession]) -> ChangeLedger:
    """Change ledger on the test database."""
    return ChangeLedger(session_factory)


@pytest.fixture
def store(
    session_factory: async_sessionmaker[AsyncSession],
    ledger: ChangeLedger,
) -> CaseStore:
    """Case store on the test database."""
    return CaseStore(session_factory, ledger)


@pytest.fixture
def create_case(store: CaseStore, rules: RuleSet) -> Callable:
    """Factory that evaluates answers and records a case."""

    async def _create(**answers) -> CaseRecord:
        decision = evaluate(complete_input(**answers), rules)
        return await store.create_case(decision, CaseMeta(source="test"))

    return _create


@pytest.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    rules: RuleSet,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for the app with the test database injected."""
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_ruleset] = lambda: rules

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def create_test_token(subject: str, actor_type: str = "staff") -> str:
    """Create a test JWT token for an actor."""
    return create_access_token(
        subject=subject,
        additional_claims={"actor_type": actor_type},
    )


@pytest.fixture
def auth_headers() -> dict[str, str]:
    """Authorization headers for a staff member."""
    return {"Authorization": f"Bearer {create_test_token('nurse.kim@clinic.test')}"}


@pytest.fixture
def patient_auth_headers() -> dict[str, str]:
    """Authorization headers for a non-staff actor."""
    token = create_test_token("patient-123", actor_type="patient")
    return {"Authorization": f"Bearer {token}"}

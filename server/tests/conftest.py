"""
Shared test configuration and fixtures for the formbridge test suite.
"""

import json
import os
from typing import Any, Dict, List, Optional, Tuple, Union

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only")
os.environ.setdefault("SITE_URL", "https://forms.example.com")

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from formbridge.db.base import Base
from formbridge.integrations.context import RequestContext, SecretResolver
from formbridge.integrations.hooks import IntegrationHooks
from formbridge.integrations.submission import FormField, Submission
from formbridge.models.payment import Payment

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
SIGNING_SECRET = "test-signing-secret"

StubResponse = Union[Tuple[int, Dict[str, Any]], Exception]


class VendorStub:
    """
    Records outbound vendor requests and answers them from canned responses.

    Responses are keyed by method and path suffix; a list of responses for
    one route is consumed in order, the last one repeating.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self._routes: Dict[Tuple[str, str], List[StubResponse]] = {}

    def add(
        self,
        method: str,
        path: str,
        json_body: Optional[Dict[str, Any]] = None,
        status_code: int = 200,
        exc: Optional[Exception] = None,
    ) -> "VendorStub":
        response: StubResponse = exc if exc is not None else (status_code, json_body or {})
        self._routes.setdefault((method.upper(), path), []).append(response)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        for (method, path), responses in self._routes.items():
            if request.method == method and request.url.path.endswith(f"/{path}"):
                response = responses.pop(0) if len(responses) > 1 else responses[0]
                if isinstance(response, Exception):
                    raise response
                status_code, body = response
                return httpx.Response(status_code, json=body)

        return httpx.Response(404, json={"message": f"No stub for {request.method} {request.url.path}"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def calls(self) -> List[Tuple[str, str]]:
        return [(request.method, request.url.path) for request in self.requests]

    def json_body(self, index: int) -> Dict[str, Any]:
        return json.loads(self.requests[index].content)


@pytest_asyncio.fixture
async def db_engine():
    """In-memory database shared by every session of one test."""
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncSession:
    """Create async database session for testing."""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        yield session


@pytest.fixture
def vendor() -> VendorStub:
    return VendorStub()


@pytest.fixture
def hooks() -> IntegrationHooks:
    return IntegrationHooks()


@pytest.fixture
def secrets() -> SecretResolver:
    return SecretResolver(environ={"MERCURY_API_KEY": "env-key"})


@pytest.fixture
def request_context() -> RequestContext:
    return RequestContext(
        site_url="https://forms.example.com",
        origin="https://forms.example.com",
        client_ip="203.0.113.10",
        user_agent="pytest-browser/1.0",
        accept="text/html",
    )


@pytest.fixture
def mercury_config() -> Dict[str, Any]:
    return {
        "api_key": "mercury-key",
        "api_token": "mercury-token",
        "map_to_contact": True,
        "map_to_opportunity": True,
        "contact_field_mapping": {
            "email": "{email}",
            "firstName": "{name.firstName}",
            "lastName": "{name.lastName}",
            "notes": "Enquiry from {form}",
        },
        "opportunity_field_mapping": {
            "opportunityName": "Website lead: {name.lastName}",
            "amount": "{loanAmount}",
        },
    }


@pytest.fixture
def opayo_config() -> Dict[str, Any]:
    return {
        "vendor_name": "sandboxvendor",
        "integration_key": "integration-key",
        "integration_password": "integration-password",
        "use_sandbox": True,
        "signing_secret": SIGNING_SECRET,
        "field": {"id": "field-1", "handle": "payment", "name": "Payment", "type": "payment"},
        "field_settings": {
            "currency": "GBP",
            "amount_type": "fixed",
            "amount_fixed": "10.00",
        },
    }


def make_submission(values: Optional[Dict[str, Any]] = None, submission_id: str = "sub-1") -> Submission:
    return Submission(
        id=submission_id,
        form_handle="contact",
        fields=[
            FormField(id="field-1", handle="payment", name="Payment", type="payment"),
            FormField(id="field-2", handle="email", name="Email", type="email"),
        ],
        values=values or {},
    )


@pytest.fixture
def submission_factory():
    return make_submission


async def fetch_payments(session: AsyncSession) -> List[Payment]:
    result = await session.execute(
        select(Payment).order_by(Payment.created_at).execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


@pytest.fixture
def payments_in_db():
    """Load every persisted payment, oldest first."""
    return fetch_payments

from datetime import date
from typing import Callable, List, Optional

import httpx
import pytest

from leasing_chat.config import CompletionSettings, LeadSyncSettings, Settings
from leasing_chat.models.crm import KnowledgeEntry, OperatorConfig
from leasing_chat.services.completion import CompletionClient
from leasing_chat.services.lead_store import InMemoryLeadStore
from leasing_chat.services.lead_sync import LeadSyncGateway
from leasing_chat.services.orchestrator import TurnOrchestrator
from leasing_chat.services.session_store import InMemorySessionStore

# A Wednesday.
TODAY = date(2026, 10, 14)
CRM_URL = "https://crm.test/api/leads"


class FakeCompletion(CompletionClient):
    def __init__(self, replies: Optional[List[str]] = None, error: Optional[Exception] = None) -> None:
        self.replies = list(replies or [])
        self.error = error
        self.calls = []

    async def complete(self, instructions, history):
        self.calls.append((instructions, list(history)))
        if self.error is not None:
            raise self.error
        if self.replies:
            return self.replies.pop(0)
        return "Happy to help! What day works best for a tour?"


class CrmEndpoint:
    """Records lead posts and answers from a scripted list of responses."""

    def __init__(self, responses: Optional[List[Callable[[httpx.Request], httpx.Response]]] = None) -> None:
        self.requests: List[httpx.Request] = []
        self.responses = list(responses or [])

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            return self.responses.pop(0)(request)
        return httpx.Response(200, json={"leadId": "lv-1001"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def make_settings(**overrides) -> Settings:
    lead_sync = overrides.pop(
        "lead_sync",
        LeadSyncSettings(url=CRM_URL, api_key="crm-key", backoff_seconds=0.0, mode="inline", company_id="south-oak"),
    )
    return Settings(completion=CompletionSettings(), lead_sync=lead_sync, **overrides)


@pytest.fixture
def operator():
    return OperatorConfig(
        knowledge_base=[
            KnowledgeEntry(category="pricing", title="Rent", content="Studios start at $1,195 per month."),
            KnowledgeEntry(category="policies", title="Pets", content="Cats and dogs are welcome."),
        ]
    )


@pytest.fixture
def sessions():
    return InMemorySessionStore()


@pytest.fixture
def leads():
    return InMemoryLeadStore()


@pytest.fixture
def completion():
    return FakeCompletion()


@pytest.fixture
def crm():
    return CrmEndpoint()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def orchestrator(settings, operator, sessions, leads, completion, crm):
    gateway = LeadSyncGateway(settings.lead_sync, property_name=operator.property_name, client=crm.client())
    return TurnOrchestrator(
        settings=settings,
        operator=operator,
        sessions=sessions,
        leads=leads,
        completion=completion,
        gateway=gateway,
        today=lambda: TODAY,
    )

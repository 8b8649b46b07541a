"""
Test configuration and fixtures.

Provides:
- A fresh in-memory SQLite database per test
- Session factory / session fixtures
- Fake external adapters (form source, analyzer, report generator, notifier)
- An IntakePipeline wired to the fakes
"""
import os

# Must be set before formflow.core.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["OPENAI_API_KEY"] = ""
os.environ["RESEND_API_KEY"] = ""
os.environ["ALERT_WEBHOOK_URL"] = ""
os.environ["REPORT_SERVICE_URL"] = ""
os.environ["RETRY_BASE_DELAY"] = "0"
os.environ["RETRY_MAX_DELAY"] = "0"
os.environ["AUTO_START_POLLING"] = "False"

from datetime import datetime, timezone
from typing import Any, Generator

import pytest
from sqlalchemy.orm import Session, sessionmaker

from formflow.db.base import Base
from formflow.db.session import build_engine, build_session_factory, init_db
from formflow.schemas.intake import Submission, TrackedForm
from formflow.services.email_templates import render_template
from formflow.services.intake_pipeline import IntakePipeline
from formflow.services.notification_service import SentEmail
from formflow.services.qualification_service import AnalysisResult


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def engine():
    engine = build_engine("sqlite://")
    init_db(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine) -> sessionmaker:
    return build_session_factory(engine)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# =============================================================================
# Fake adapters
# =============================================================================

class FakeAnalyzer:
    def __init__(self, summary: str = "Qualified buyer, pre-approved.", error=None):
        self.summary = summary
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def summarize(self, text: str, *, client_type: str = "buyer") -> AnalysisResult:
        self.calls.append((text, client_type))
        if self.error is not None:
            raise self.error
        return AnalysisResult(summary=self.summary, model="fake-model")


class FakeArtifacts:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[Any] = []

    async def create_report(self, client, form_data, summary) -> str:
        self.calls.append((client, form_data, summary))
        if self.error is not None:
            raise self.error
        return f"https://reports.example.com/{client.client_type}/{len(self.calls)}.pdf"


class FakeNotifier:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.sent: list[dict[str, Any]] = []

    async def send(self, recipient, template_name, data, subject=None) -> SentEmail:
        if self.error is not None:
            raise self.error
        rendered = render_template(template_name, data, subject)
        self.sent.append(
            {"recipient": recipient, "template": template_name, "data": data, "subject": rendered.subject}
        )
        return SentEmail(
            recipient=recipient,
            template=template_name,
            subject=rendered.subject,
            message_id=f"msg_{len(self.sent)}",
            sent_at=datetime.now(timezone.utc).isoformat(),
        )


class FakeFormSource:
    """Serves canned submissions per form; a form mapped to an exception fails."""

    def __init__(self, forms: list[TrackedForm]):
        self.forms = forms
        self.submissions: dict[str, list[Submission]] = {f.form_id: [] for f in forms}
        self.errors: dict[str, Exception] = {}
        self.calls: list[tuple[str, datetime]] = []

    async def list_submissions(self, form_id, since, *, limit=None) -> list[Submission]:
        self.calls.append((form_id, since))
        if form_id in self.errors:
            raise self.errors[form_id]
        # Deliberately newest-first: callers must not depend on order
        batch = [s for s in self.submissions.get(form_id, []) if s.created_at > since]
        return sorted(batch, key=lambda s: s.created_at, reverse=True)

    async def discover_tracked_forms(self) -> list[TrackedForm]:
        return list(self.forms)


@pytest.fixture
def analyzer() -> FakeAnalyzer:
    return FakeAnalyzer()


@pytest.fixture
def artifacts() -> FakeArtifacts:
    return FakeArtifacts()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def alerts() -> list:
    return []


@pytest.fixture
def pipeline(session_factory, analyzer, artifacts, notifier, alerts) -> IntakePipeline:
    async def alert_hook(failed):
        alerts.append((failed.submission_id, failed.stage, failed.attempts))

    return IntakePipeline(
        session_factory,
        analyzer,
        artifacts,
        notifier,
        alert_hook=alert_hook,
        agent_email="agent@example.com",
    )


@pytest.fixture
def make_submission():
    def _make(
        submission_id: str = "5001",
        *,
        email: str | None = "a@x.com",
        name: str = "A",
        form_id: str = "buyer-form",
        created_at: datetime | str = "2024-06-01 12:00:00",
        extra: dict[str, Any] | None = None,
    ) -> Submission:
        answers: dict[str, Any] = {"2": {"answer": name}}
        if email is not None:
            answers["3"] = {"answer": email}
        answers["q5_budget"] = {"answer": "$500,000"}
        answers.update(extra or {})
        return Submission(id=submission_id, form_id=form_id, created_at=created_at, answers=answers)

    return _make



@pytest.fixture
def tracked_forms() -> list[TrackedForm]:
    return [
        TrackedForm(form_id="buyer-form", client_type="buyer"),
        TrackedForm(form_id="seller-form", client_type="seller"),
    ]


@pytest.fixture
def form_source(tracked_forms) -> FakeFormSource:
    return FakeFormSource(tracked_forms)

"""Error taxonomy for the intake pipeline.

Every error is caught at the narrowest boundary that applies to it (per form,
per submission, per pipeline stage) and never escapes the polling loop.
"""


class IntakeError(Exception):
    """Base class for intake pipeline errors."""


class FetchError(IntakeError):
    """Polling a form failed; the cursor is left unchanged and the form retried next tick."""

    def __init__(self, form_id: str, message: str) -> None:
        super().__init__(f"Fetch failed for form {form_id}: {message}")
        self.form_id = form_id


class UnresolvableIdentity(IntakeError):
    """No email could be extracted from a submission; it is skipped permanently."""

    def __init__(self, submission_id: str) -> None:
        super().__init__(f"No email found in submission {submission_id}")
        self.submission_id = submission_id


class AnalysisFailure(IntakeError):
    """The qualification analyzer failed; the pipeline continues in degraded mode."""


class ArtifactFailure(IntakeError):
    """Report generation failed; the workflow stays at form_completed."""


class NotificationFailure(IntakeError):
    """Agent notification failed; the workflow stays at form_completed."""


class DuplicateSubmission(IntakeError):
    """An analysis already exists for this submission id."""

    def __init__(self, submission_id: str) -> None:
        super().__init__(f"Submission {submission_id} already processed")
        self.submission_id = submission_id


class WorkflowTransitionError(IntakeError):
    """A workflow or step transition would move state backwards."""


class TemplateDataError(IntakeError):
    """Template data does not match the closed schema for that template."""

import pytest

from playengine.contracts import Blocked, Completed, CurrentUser, Failed, Workstream
from playengine.errors import InvalidResumption, UnknownStepType
from playengine.steps import (
    ApprovalGate,
    Collection,
    DocumentGeneration,
    ManualTask,
    Notification,
    PassThrough,
    StepRegistry,
    default_registry,
    interpolate,
)


@pytest.fixture
def workstream():
    return Workstream(id="ws-1", name="Acme renewal", annual_value=250000, tier="gold")


@pytest.fixture
def approver():
    return CurrentUser(id="u-legal", email="legal@example.com", role="legal")


def test_interpolate_replaces_known_fields_only():
    assert interpolate("Deal {{name}} for {{ tier }}{{missing}}", {"name": "Acme", "tier": "gold"}) == "Deal Acme for gold"


def test_default_registry_contains_builtin_behaviours():
    registry = default_registry()
    for step_type in (
        "approval",
        "manual_task",
        "collection",
        "document_generation",
        "notification",
        "start",
        "end",
        "fork",
        "join",
    ):
        assert step_type in registry


def test_registry_rejects_duplicates_and_bad_tags():
    registry = StepRegistry([PassThrough("start")])
    with pytest.raises(ValueError, match="already registered"):
        registry.register(PassThrough("start"))
    with pytest.raises(ValueError, match="Invalid step type tag"):
        registry.register(PassThrough("Bad-Tag"))
    registry.register(PassThrough("start"), replace=True)
    assert len(registry) == 1
    with pytest.raises(UnknownStepType, match="unregistered_type"):
        registry.get("unregistered_type")


@pytest.mark.asyncio
async def test_approval_blocks_with_decision_details(workstream):
    outcome = await ApprovalGate().execute(
        {"gate": 2, "approver_role": "legal"}, workstream, None
    )
    assert isinstance(outcome, Blocked)
    action = outcome.pending_action
    assert action.type == "approval_decision"
    assert action.details == {
        "gate": 2,
        "approver_role": "legal",
        "decision_options": ["approved", "rejected"],
    }


@pytest.mark.asyncio
async def test_approval_auto_approves_when_rules_match(workstream):
    config = {"auto_approve": [{"metric": "annual_value", "op": ">", "value": 100000}]}
    outcome = await ApprovalGate().execute(config, workstream, None)
    assert isinstance(outcome, Completed)
    assert outcome.output["decision"] == "approved"
    assert outcome.output["auto_approved"] is True


@pytest.mark.asyncio
async def test_approval_resume_validates_decision_and_role(workstream, approver):
    gate = ApprovalGate()
    config = {"approver_role": "legal"}
    blocked = await gate.execute(config, workstream, None)
    action = blocked.pending_action

    with pytest.raises(InvalidResumption, match="not one of"):
        await gate.resume(config, workstream, approver, action, {"decision": "maybe"})
    with pytest.raises(InvalidResumption, match="lacks required role"):
        await gate.resume(
            config, workstream, CurrentUser(id="u-sales", roles=["sales"]), action, {"decision": "approved"}
        )

    outcome = await gate.resume(
        config, workstream, approver, action, {"decision": "rejected", "reasoning": "price"}
    )
    assert outcome.output["decision"] == "rejected"
    assert outcome.output["decided_by"] == "u-legal"
    assert outcome.output["reasoning"] == "price"


@pytest.mark.asyncio
async def test_manual_task_requires_completion_flag(workstream):
    task = ManualTask()
    blocked = await task.execute({"title": "Call customer"}, workstream, None)
    assert blocked.pending_action.type == "manual_task"
    assert blocked.pending_action.description == "Call customer"

    with pytest.raises(InvalidResumption):
        await task.resume({}, workstream, None, blocked.pending_action, {})
    outcome = await task.resume(
        {}, workstream, CurrentUser(id="u1"), blocked.pending_action, {"completed": True}
    )
    assert outcome.output["completed_by"] == "u1"


@pytest.mark.asyncio
async def test_collection_completes_from_known_fields(workstream):
    config = {"fields": [{"name": "tier"}, {"name": "annual_value", "field_type": "number"}]}
    outcome = await Collection().execute(config, workstream, None)
    assert isinstance(outcome, Completed)
    assert outcome.output == {"tier": "gold", "annual_value": 250000, "collected_by": "system"}


@pytest.mark.asyncio
async def test_collection_blocks_and_validates_response(workstream):
    step = Collection()
    config = {
        "fields": [
            {"name": "term_months", "field_type": "number"},
            {"name": "billing", "field_type": "select", "options": ["monthly", "annual"]},
        ]
    }
    blocked = await step.execute(config, workstream, None)
    assert isinstance(blocked, Blocked)
    assert blocked.pending_action.details["missing_fields"] == ["term_months", "billing"]

    with pytest.raises(InvalidResumption, match="must be a number"):
        await step.resume(
            config, workstream, None, blocked.pending_action, {"term_months": "twelve", "billing": "annual"}
        )
    outcome = await step.resume(
        config,
        workstream,
        CurrentUser(id="u1"),
        blocked.pending_action,
        {"term_months": 12, "billing": "annual"},
    )
    assert outcome.output == {"term_months": 12, "billing": "annual", "collected_by": "u1"}


class _Renderer:
    def __init__(self, document=None):
        self.document = {"document_id": "doc-1", "url": "https://docs/doc-1"} if document is None else document
        self.calls = []

    async def render(self, template_id, context):
        self.calls.append((template_id, context))
        return self.document


@pytest.mark.asyncio
async def test_document_generation_uses_renderer(workstream):
    renderer = _Renderer()
    outcome = await DocumentGeneration(renderer).execute(
        {"template_id": "msa", "output_name": "MSA {{name}}"}, workstream, None
    )
    assert isinstance(outcome, Completed)
    assert outcome.output["document_id"] == "doc-1"
    assert outcome.output["document_name"] == "MSA Acme renewal"
    assert renderer.calls[0][0] == "msa"


@pytest.mark.asyncio
async def test_document_generation_fails_without_document_id(workstream):
    outcome = await DocumentGeneration(_Renderer(document={})).execute(
        {"template_id": "msa"}, workstream, None
    )
    assert isinstance(outcome, Failed)
    assert outcome.error_type == "DocumentGenerationError"


@pytest.mark.asyncio
async def test_document_generation_waits_for_upload_without_renderer(workstream):
    step = DocumentGeneration()
    blocked = await step.execute({"template_id": "msa"}, workstream, None)
    assert blocked.pending_action.type == "document_upload"
    with pytest.raises(InvalidResumption):
        await step.resume({}, workstream, None, blocked.pending_action, {})
    outcome = await step.resume({}, workstream, None, blocked.pending_action, {"document_id": "up-1"})
    assert outcome.output["document_id"] == "up-1"


@pytest.mark.asyncio
async def test_notification_interpolates_and_sends(workstream):
    sent = []

    class _Notifier:
        async def send(self, recipients, subject, message, channel):
            sent.append((recipients, subject, message, channel))

    outcome = await Notification(_Notifier()).execute(
        {
            "recipients": ["{{owner_id}}", "legal@example.com"],
            "subject": "{{name}}",
            "message": "Value {{annual_value}}",
            "channel": "email",
        },
        workstream,
        None,
    )
    assert isinstance(outcome, Completed)
    assert sent == [(["legal@example.com"], "Acme renewal", "Value 250000.0", "email")]
    assert outcome.output["notified"] == ["legal@example.com"]


@pytest.mark.asyncio
async def test_pass_through_rejects_resume(workstream):
    step = PassThrough("start")
    assert isinstance(await step.execute({}, workstream, None), Completed)
    blocked = await ManualTask().execute({}, workstream, None)
    with pytest.raises(InvalidResumption, match="does not accept external input"):
        await step.resume({}, workstream, None, blocked.pending_action, {})

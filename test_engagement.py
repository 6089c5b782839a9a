"""
End-to-end tests for one engagement step: detection, stopping policy,
reply generation, persistence and report dispatch.
"""

import asyncio
import random

import pytest

from honeypot.agent_controller import AgentController
from honeypot.callback_client import ReportOutcome
from honeypot.engagement import DISENGAGED_NOTES, MONITORING_NOTES, EngagementController
from honeypot.errors import InternalError, PersistenceError, ValidationError
from honeypot.humanizer import MAX_DELAY, MIN_DELAY
from honeypot.models import Message, ScamType
from honeypot.scam_detector import ScamDetector
from honeypot.session_store import InMemorySessionStore, StoppingPolicy

BENIGN = "Hi, are we still meeting for lunch tomorrow?"
KYC_PRESSURE = "URGENT your KYC is pending, verify immediately or account will be blocked"
UPI_DEMAND = "Send Rs 10 to verify@ybl to unblock"
PHISHING = "Your account is blocked! Send OTP to 9876543210 or visit http://bank-verify.xyz"


def scammer(text):
    return Message(sender="scammer", text=text, timestamp=1700000000000)


class FakeReportClient:

    def __init__(self, success=True):
        self.success = success
        self.calls = []

    async def report(self, session_id, payload):
        self.calls.append((session_id, payload))
        return ReportOutcome(success=self.success, attempts=1 if self.success else 3)


class FakeEvidenceStore:

    def __init__(self, fail=False):
        self.fail = fail
        self.persisted = []

    async def persist(self, session):
        if self.fail:
            raise PersistenceError("disk full")
        self.persisted.append(session.session_id)

    def get_evidence(self):
        return {}


class CountingDetector(ScamDetector):

    def __init__(self, explode=False):
        super().__init__()
        self.explode = explode
        self.calls = 0

    async def analyze(self, text, history=()):
        self.calls += 1
        if self.explode:
            raise RuntimeError("detector bug")
        return await super().analyze(text, history)


class SleepRecorder:

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def reporter():
    return FakeReportClient()


@pytest.fixture
def evidence():
    return FakeEvidenceStore()


@pytest.fixture
def make_controller(make_provider, sleep, reporter, evidence):
    def _make(providers=None, detector=None, max_messages=20, **kwargs):
        if providers is None:
            providers = [make_provider("gemini", ["oh no, what should i do"])]
        options = dict(
            store=InMemorySessionStore(),
            detector=detector or ScamDetector(),
            orchestrator=AgentController(providers, rng=random.Random(1)),
            policy=StoppingPolicy(max_messages=max_messages),
            evidence_store=evidence,
            report_client=reporter,
            sleep=sleep,
        )
        options.update(kwargs)
        return EngagementController(**options)
    return _make


class TestEngagementFlow:

    @pytest.mark.asyncio
    async def test_benign_message_is_monitored_only(self, make_controller, make_provider, sleep):
        provider = make_provider("gemini", ["hello"])
        controller = make_controller(providers=[provider])

        result = await controller.handle("s1", scammer(BENIGN))

        assert not result.scamDetected
        assert result.reply is None
        assert result.notes == MONITORING_NOTES
        assert result.engagementMetrics.totalMessages == 1
        assert provider.calls == []
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_scam_without_intel_gets_a_paced_reply(self, make_controller, sleep, evidence):
        controller = make_controller()

        result = await controller.handle("s1", scammer(KYC_PRESSURE))

        assert result.scamDetected
        assert result.reply
        assert result.engagementMetrics.totalMessages == 2
        assert len(sleep.delays) == 1
        assert MIN_DELAY <= sleep.delays[0] <= MAX_DELAY

        session = controller.store.get("s1")
        assert session.scam_type == ScamType.BANK_FRAUD
        assert [m.sender.value for m in session.conversation_history] == ["scammer", "agent"]
        assert session.conversation_history[1].text == result.reply
        assert evidence.persisted == ["s1"]

    @pytest.mark.asyncio
    async def test_first_actionable_intel_completes_and_reports_once(self, make_controller, reporter):
        controller = make_controller()

        await controller.handle("s1", scammer(KYC_PRESSURE))
        result = await controller.handle("s1", scammer(UPI_DEMAND))
        await controller.wait_for_background()

        assert result.reply is None
        assert result.scamDetected
        assert result.notes.startswith(DISENGAGED_NOTES)
        assert result.extractedIntelligence.upiIds == ["verify@ybl"]

        session = controller.store.get("s1")
        assert session.is_complete
        assert session.report_sent

        assert len(reporter.calls) == 1
        session_id, payload = reporter.calls[0]
        assert session_id == "s1"
        assert payload.scamDetected
        assert payload.totalMessagesExchanged == 3
        assert payload.extractedIntelligence.upiIds == ["verify@ybl"]

    @pytest.mark.asyncio
    async def test_intel_on_first_message_stops_immediately(self, make_controller, make_provider, reporter):
        provider = make_provider("gemini", ["never sent"])
        controller = make_controller(providers=[provider])

        result = await controller.handle("s1", scammer(PHISHING))
        await controller.wait_for_background()

        assert result.scamDetected
        assert result.reply is None
        assert result.extractedIntelligence.phoneNumbers == ["9876543210"]
        assert provider.calls == []
        assert len(reporter.calls) == 1

    @pytest.mark.asyncio
    async def test_short_reference_number_does_not_end_engagement(self, make_controller, reporter):
        controller = make_controller()

        result = await controller.handle("s1", scammer("URGENT verify your KYC now, ref 12345678"))

        assert result.scamDetected
        assert result.reply
        assert result.extractedIntelligence.bankAccounts == []
        assert not controller.store.get("s1").is_complete
        assert reporter.calls == []

    @pytest.mark.asyncio
    async def test_complete_session_only_logs(self, make_controller, reporter):
        detector = CountingDetector()
        controller = make_controller(detector=detector)

        await controller.handle("s1", scammer(PHISHING))
        calls_before = detector.calls
        result = await controller.handle("s1", scammer("hello? are you there?"))
        await controller.wait_for_background()

        assert result.reply is None
        assert result.engagementMetrics.totalMessages == 2
        assert detector.calls == calls_before
        assert len(reporter.calls) == 1

    @pytest.mark.asyncio
    async def test_message_cap_forces_completion(self, make_controller, reporter):
        controller = make_controller(max_messages=4)

        first = await controller.handle("s1", scammer(KYC_PRESSURE))
        second = await controller.handle("s1", scammer(KYC_PRESSURE))
        third = await controller.handle("s1", scammer(KYC_PRESSURE))
        await controller.wait_for_background()

        assert first.reply and second.reply
        assert third.reply is None
        assert controller.store.get("s1").is_complete
        assert len(reporter.calls) == 1

    @pytest.mark.asyncio
    async def test_pacing_can_be_disabled(self, make_controller, sleep):
        controller = make_controller(enable_pacing=False)
        result = await controller.handle("s1", scammer(KYC_PRESSURE))
        assert result.reply
        assert sleep.delays == []


class TestPriorHistory:

    @pytest.mark.asyncio
    async def test_seeded_on_first_turn_only(self, make_controller):
        controller = make_controller()
        prior = [scammer("hello"), Message(sender="user", text="who is this?")]

        first = await controller.handle("s1", scammer(BENIGN), prior)
        second = await controller.handle("s1", scammer(BENIGN), prior)

        assert first.engagementMetrics.totalMessages == 3
        assert second.engagementMetrics.totalMessages == 4

    @pytest.mark.asyncio
    async def test_intel_in_prior_scammer_messages_is_kept(self, make_controller):
        controller = make_controller()
        prior = [scammer("my upi is old.handle@ybl")]

        result = await controller.handle("s1", scammer(BENIGN), prior)

        assert result.extractedIntelligence.upiIds == ["old.handle@ybl"]
        assert not result.scamDetected


class TestValidation:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("session_id, message", [
        ("", scammer("hi")),
        ("   ", scammer("hi")),
        ("s1", None),
        ("s1", Message(sender="scammer", text="   ")),
    ])
    async def test_invalid_input_touches_nothing(self, make_controller, session_id, message):
        controller = make_controller()
        with pytest.raises(ValidationError):
            await controller.handle(session_id, message)
        assert controller.store.all_sessions() == []


class TestFaultHandling:

    @pytest.mark.asyncio
    async def test_detector_fault_degrades_to_raw_score(self, make_controller):
        controller = make_controller(detector=CountingDetector(explode=True))

        scam = await controller.handle("s1", scammer(PHISHING))
        benign = await controller.handle("s2", scammer(BENIGN))

        assert scam.scamDetected
        assert controller.store.get("s1").scam_type == ScamType.OTHER
        assert not benign.scamDetected

    @pytest.mark.asyncio
    async def test_all_providers_down_still_replies(self, make_controller, failing_provider):
        controller = make_controller(providers=[failing_provider])
        result = await controller.handle("s1", scammer(KYC_PRESSURE))
        assert result.reply

    @pytest.mark.asyncio
    async def test_persistence_failure_is_not_fatal(self, make_controller):
        controller = make_controller(evidence_store=FakeEvidenceStore(fail=True))
        result = await controller.handle("s1", scammer(KYC_PRESSURE))
        assert result.reply

    @pytest.mark.asyncio
    async def test_failed_report_never_resets_flag(self, make_controller):
        failing_reporter = FakeReportClient(success=False)
        controller = make_controller(report_client=failing_reporter)

        await controller.handle("s1", scammer(PHISHING))
        await controller.wait_for_background()
        await controller.handle("s1", scammer(UPI_DEMAND))
        await controller.wait_for_background()

        assert controller.store.get("s1").report_sent
        assert len(failing_reporter.calls) == 1

    @pytest.mark.asyncio
    async def test_unexpected_fault_becomes_internal_error(self, make_controller):
        class ExplodingOrchestrator(AgentController):
            async def generate_response(self, session, inbound):
                raise RuntimeError("boom")

        controller = make_controller(orchestrator=ExplodingOrchestrator())

        with pytest.raises(InternalError) as excinfo:
            await controller.handle("s1", scammer(KYC_PRESSURE))
        assert str(excinfo.value) == InternalError.SAFE_MESSAGE


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_same_session_is_serialized_in_arrival_order(self, make_controller, make_provider):
        provider = make_provider("gemini", ["hmm ok"], delay=0.01)
        controller = make_controller(providers=[provider])
        texts = [f"URGENT verify your KYC now, step {i}" for i in range(5)]

        results = await asyncio.gather(*(controller.handle("s1", scammer(t)) for t in texts))

        session = controller.store.get("s1")
        inbound = [m.text for m in session.conversation_history if m.sender.value == "scammer"]
        assert inbound == texts
        assert session.message_count == 10
        assert all(r.reply for r in results)

    @pytest.mark.asyncio
    async def test_other_sessions_are_not_blocked(self, make_controller):
        controller = make_controller()

        async with controller.store.lock("busy"):
            result = await asyncio.wait_for(controller.handle("free", scammer(KYC_PRESSURE)), timeout=2)

        assert result.reply

    @pytest.mark.asyncio
    async def test_concurrent_completion_reports_once(self, make_controller, reporter):
        controller = make_controller()

        await asyncio.gather(*(controller.handle("s1", scammer(PHISHING)) for _ in range(5)))
        await controller.wait_for_background()

        assert len(reporter.calls) == 1

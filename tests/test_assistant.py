from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from scout_api.db.schemas import Transaction
from scout_api.services.assistant_service import (
    APOLOGY,
    GREETING,
    AssistantService,
    build_context_digest,
)
from tests.conftest import FakeLLM, make_rows


def test_reply_is_returned_verbatim(settings):
    llm = FakeLLM(reply="Oishi leads NCR with ₱12,000.")
    svc = AssistantService(settings, llm=llm)

    sid, turn, failed = svc.ask("Top brand?", context="Current dataset: 10 transactions")

    assert not failed
    assert turn.content == "Oishi leads NCR with ₱12,000."
    assert [t.role for t in svc.messages(sid)] == ["assistant", "user", "assistant"]
    assert svc.messages(sid)[0].content == GREETING


def test_prompt_carries_context_and_history(settings):
    llm = FakeLLM()
    svc = AssistantService(settings, llm=llm)
    sid, _, _ = svc.ask("first")
    svc.ask("second", session_id=sid, context="Top regions: NCR.")

    prompt = llm.prompts[-1]

    assert isinstance(prompt[0], SystemMessage)
    assert "Top regions: NCR." in prompt[0].content
    assert "₱" in prompt[0].content
    assert isinstance(prompt[1], AIMessage)
    assert [m.content for m in prompt[2:]] == ["first", "Fake reply", "second"]
    assert isinstance(prompt[-1], HumanMessage)


def test_failure_becomes_apology(settings):
    svc = AssistantService(settings, llm=FakeLLM(error=TimeoutError("upstream timed out")))

    sid, turn, failed = svc.ask("Why?")

    assert failed
    assert turn.content == APOLOGY
    assert [t.content for t in svc.messages(sid)][-2:] == ["Why?", APOLOGY]


def test_unconfigured_model_apologizes(settings):
    svc = AssistantService(settings, llm=None)
    svc.llm = None

    _, turn, failed = svc.ask("Hello")

    assert failed
    assert turn.content == APOLOGY


def test_reset_returns_to_greeting(settings):
    svc = AssistantService(settings, llm=FakeLLM())
    sid, _, _ = svc.ask("hi")

    turns = svc.reset(sid)

    assert [t.content for t in turns] == [GREETING]
    assert svc.messages("missing") is None


def test_sessions_listing(settings):
    svc = AssistantService(settings, llm=FakeLLM())
    sid, _, _ = svc.ask("How are sales in Cebu?")

    (summary,) = svc.sessions()

    assert summary["session_id"] == sid
    assert summary["preview"] == "How are sales in Cebu?"
    assert summary["messages"] == 3


def test_context_digest():
    assert build_context_digest([]) == ""

    rows = [Transaction.from_row(r) for r in make_rows(40)]
    digest = build_context_digest(rows)

    assert digest.startswith("Current dataset: 40 transactions")
    assert "Top regions:" in digest
    assert "Unknown" not in digest


def test_least_recently_used_session_is_evicted(settings):
    svc = AssistantService(settings.model_copy(update={"chat_max_sessions": 2}), llm=FakeLLM())
    svc.ask("one", session_id="a")
    svc.ask("two", session_id="b")
    svc.ask("three", session_id="a")

    svc.ask("four", session_id="c")

    assert svc.messages("b") is None
    assert [t.content for t in svc.messages("a")][-2:] == ["three", "Fake reply"]
    assert {s["session_id"] for s in svc.sessions()} == {"a", "c"}


def test_anonymous_chats_stay_bounded(settings):
    svc = AssistantService(settings.model_copy(update={"chat_max_sessions": 3}), llm=FakeLLM())

    for i in range(10):
        svc.ask(f"question {i}")

    assert len(svc.sessions()) == 3

import threading

import pytest

from dxchat.models import Attachment, DiagnosisProbability, DiagnosticReply
from dxchat.session import (
    ChatSession,
    EmptyMessageError,
    SessionBusyError,
    SessionNotFoundError,
    SessionStore,
    rank_probabilities,
)


def _reply(phase="questioning", probabilities=None, progress=20, text="Do you have a fever?"):
    if probabilities is None:
        probabilities = [DiagnosisProbability(condition="Influenza", percentage=60)]
    return DiagnosticReply(reply=text, probabilities=probabilities, phase=phase, progress=progress)


def test_new_session_starts_in_intro_with_greeting():
    session = ChatSession()

    state = session.state
    assert state.phase == "intro"
    assert state.progress == 0
    assert not state.is_loading
    assert [m.id for m in state.messages] == ["init-1"]
    assert state.messages[0].content.startswith("Hello. I am Abdulloh AI")
    assert [(p.condition, p.percentage) for p in state.current_probabilities] == [("Differential Diagnosis", 0)]


def test_uzbek_greeting():
    session = ChatSession(language="uz")
    assert session.state.messages[0].content.startswith("Salom.")


def test_language_change_regreets_before_conversation():
    session = ChatSession()
    session.change_language("uz")

    assert session.state.language == "uz"
    assert len(session.state.messages) == 1
    assert session.state.messages[0].content.startswith("Salom.")


def test_language_change_keeps_history_once_conversation_started():
    session = ChatSession()
    session.begin_turn("headache")
    session.complete_turn(_reply())

    session.change_language("uz")

    assert session.state.language == "uz"
    assert session.state.messages[0].content.startswith("Hello.")
    assert len(session.state.messages) == 3


def test_languages_without_copy_fall_back_to_english_greeting():
    session = ChatSession()
    session.change_language("de")
    assert session.state.messages[0].content.startswith("Hello.")


def test_begin_turn_rejects_empty_message():
    session = ChatSession()
    with pytest.raises(EmptyMessageError):
        session.begin_turn("   ")
    assert not session.state.is_loading
    assert len(session.state.messages) == 1


def test_begin_turn_accepts_attachment_without_text():
    session = ChatSession()
    scan = Attachment(mime_type="application/pdf", data="JVBERi0=", name="labs.pdf")

    history, user_msg = session.begin_turn("", [scan])

    assert user_msg.content == ""
    assert user_msg.attachments == [scan]
    assert len(history) == 1


def test_begin_turn_snapshots_history_and_marks_busy():
    session = ChatSession()

    history, user_msg = session.begin_turn("I have had a cough for two weeks")

    assert [m.id for m in history] == ["init-1"]
    assert session.state.messages[-1] is user_msg
    assert user_msg.role == "user"
    assert session.state.is_loading


def test_second_turn_is_refused_while_busy():
    session = ChatSession()
    session.begin_turn("first")

    with pytest.raises(SessionBusyError):
        session.begin_turn("second")
    assert len(session.state.messages) == 2


def test_complete_turn_moves_phase_and_probabilities():
    session = ChatSession()
    session.begin_turn("fever")

    msg = session.complete_turn(_reply(phase="questioning", progress=25))

    state = session.state
    assert state.phase == "questioning"
    assert state.progress == 25
    assert not state.is_loading
    assert state.current_probabilities[0].condition == "Influenza"
    assert msg.role == "assistant"
    assert msg.probabilities[0].percentage == 60


def test_phase_follows_model_through_the_workflow():
    session = ChatSession()
    for phase in ("questioning", "lab_analysis", "questioning", "final_report"):
        session.begin_turn("answer")
        session.complete_turn(_reply(phase=phase))
        assert session.state.phase == phase


def test_empty_probability_list_replaces_current():
    session = ChatSession()
    session.begin_turn("fever")
    session.complete_turn(_reply(probabilities=[]))
    assert session.state.current_probabilities == []


def test_reply_without_probabilities_keeps_current():
    session = ChatSession()
    session.begin_turn("fever")
    session.complete_turn(_reply(probabilities=[DiagnosisProbability(condition="Flu", percentage=50)]))
    session.begin_turn("no rash")

    msg = session.complete_turn(DiagnosticReply(reply="Any cough?", phase="questioning", progress=40))

    assert [(p.condition, p.percentage) for p in session.state.current_probabilities] == [("Flu", 50)]
    assert msg.probabilities is None
    assert session.state.progress == 40


def test_fail_turn_appends_error_notice_and_keeps_phase():
    session = ChatSession(language="uz")
    session.begin_turn("fever")
    session.complete_turn(_reply(phase="lab_analysis"))
    session.begin_turn("more")

    notice = session.fail_turn()

    assert notice.is_error
    assert notice.role == "assistant"
    assert notice.content.startswith("So'rovingizni")
    assert session.state.phase == "lab_analysis"
    assert not session.state.is_loading


def test_fail_quota_clears_key_without_adding_message():
    session = ChatSession()
    session.set_api_key("spent-key")
    session.begin_turn("fever")

    session.fail_quota()

    state = session.state
    assert state.api_key is None
    assert state.api_key_error == "API quota exceeded. Please provide a new key."
    assert not state.is_loading
    assert [m.role for m in state.messages] == ["assistant", "user"]


def test_new_key_clears_quota_error():
    session = ChatSession()
    session.begin_turn("fever")
    session.fail_quota()

    session.set_api_key("  fresh-key ")

    assert session.state.api_key == "fresh-key"
    assert session.state.api_key_error is None


def test_cancel_turn_only_clears_busy_flag():
    session = ChatSession()
    session.begin_turn("fever")
    session.cancel_turn()
    assert not session.state.is_loading
    assert len(session.state.messages) == 2


def test_reset_returns_to_intro_keeping_language_and_key():
    session = ChatSession(language="uz")
    session.set_api_key("key")
    session.begin_turn("fever")
    session.complete_turn(_reply(phase="final_report", progress=100))

    session.reset()

    state = session.state
    assert state.phase == "intro"
    assert state.progress == 0
    assert state.language == "uz"
    assert state.api_key == "key"
    assert [m.id for m in state.messages] == ["init-1"]
    assert state.current_probabilities[0].condition == "Differential Diagnosis"


def test_reset_is_refused_while_a_reply_is_pending():
    session = ChatSession()
    session.begin_turn("fever")

    with pytest.raises(SessionBusyError):
        session.reset()

    # the pending reply still lands in the conversation it belongs to
    session.complete_turn(_reply(phase="final_report", progress=100))
    assert [m.role for m in session.state.messages] == ["assistant", "user", "assistant"]
    assert session.state.phase == "final_report"

    session.reset()
    assert session.state.phase == "intro"
    assert [m.id for m in session.state.messages] == ["init-1"]


def test_view_waits_for_a_state_change_in_progress():
    session = ChatSession()
    seen = []

    with session._lock:
        worker = threading.Thread(target=lambda: seen.append(session.view(has_api_key=True)))
        worker.start()
        worker.join(timeout=0.2)
        assert worker.is_alive()
        assert seen == []
    worker.join(timeout=5)

    assert len(seen) == 1
    assert seen[0].phase == "intro"


def test_rank_probabilities_sorts_and_limits():
    probs = [DiagnosisProbability(condition=f"c{i}", percentage=i * 10) for i in range(8)]

    ranked = rank_probabilities(probs)

    assert [p.condition for p in ranked] == ["c7", "c6", "c5", "c4", "c3", "c2"]


def test_view_hides_key_and_document_payloads():
    session = ChatSession()
    session.set_api_key("secret")
    scan = Attachment(mime_type="image/jpeg", data="/9j/", name="mri.jpg")
    report = Attachment(mime_type="application/pdf", data="JVBERi0=", name="labs.pdf")
    session.begin_turn("see files", [scan, report])

    view = session.view(has_api_key=True)
    dumped = view.model_dump_json()

    assert "secret" not in dumped
    assert view.phase_label == "intro"
    assert view.phase_description == "Initializing comprehensive diagnostic protocol."
    atts = view.messages[-1].attachments
    assert atts[0].uri == "data:image/jpeg;base64,/9j/"
    assert atts[1].uri is None
    assert atts[1].name == "labs.pdf"
    assert view.ui_text["placeholder"].startswith("Type symptoms")


def test_store_evicts_least_recently_used():
    store = SessionStore(max_sessions=2)
    first = store.create()
    second = store.create()

    store.get(first.id)
    third = store.create()

    assert len(store) == 2
    assert store.get(first.id) is first
    assert store.get(third.id) is third
    with pytest.raises(SessionNotFoundError):
        store.get(second.id)


def test_store_unknown_session():
    with pytest.raises(SessionNotFoundError):
        SessionStore().get("nope")

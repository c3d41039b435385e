import pytest

from schemas.analysis_schema import AnalysisDetails
from services.analyzer import ContractAnalysis, DegradedAnalysis, NotAContract, UpstreamError
from services.chat_gateway import CallbackEvent, UploadEvent
from utils import messages
from utils.text_extractor import DownloadFailure
from workers.document_pipeline import DocumentJob, DocumentPipeline, InvalidTransition, JobState, SourceFile

from conftest import ANALYSIS_PAYLOAD, CONTRACT_TEXT, INVOICE_TEXT, SHORT_TEXT, FakeAnalyzer, FakeFetcher

USER_ID = "1001"
CHAT_ID = 1001


def _upload(file_name="contract.txt", caption=None, file_size=None, file_id="file-1"):
    return UploadEvent(user_id=USER_ID, chat_id=CHAT_ID, file_id=file_id, file_name=file_name,
                       file_size=file_size, caption=caption)


def _callback(data, user_id=USER_ID, message_id=101):
    return CallbackEvent(callback_id="cb-1", user_id=user_id, chat_id=CHAT_ID, message_id=message_id, data=data)


@pytest.fixture
def make_pipeline(chat, ledger, job_store, tmp_path):
    def factory(content=CONTRACT_TEXT, analyzer=None, fetch_delay=0, **kwargs):
        fetcher = FakeFetcher(tmp_path, content, delay=fetch_delay)
        pipeline = DocumentPipeline(
            chat=chat,
            fetcher=fetcher,
            analyzer=analyzer or FakeAnalyzer(),
            ledger=ledger,
            jobs=job_store,
            download_notice=kwargs.get("download_notice", 30),
            extract_notice=kwargs.get("extract_notice", 30),
            analysis_notice=kwargs.get("analysis_notice", 30),
            extraction_timeout=5,
        )
        return pipeline, fetcher
    return factory


async def test_contract_reaches_party_selection(make_pipeline, chat, ledger, job_store, contract_analysis):
    analyzer = FakeAnalyzer(result=contract_analysis)
    pipeline, fetcher = make_pipeline(analyzer=analyzer)

    job = await pipeline.handle_upload(_upload())

    assert job.state == JobState.AWAITING_PARTY_SELECTION
    assert job.history == [
        JobState.UPLOADED, JobState.DOWNLOADING, JobState.EXTRACTING,
        JobState.STRUCTURE_CHECK, JobState.CLASSIFYING, JobState.ANALYZING,
    ]
    assert analyzer.calls and "ДОГОВОР ОКАЗАНИЯ УСЛУГ" in analyzer.calls[0]
    assert ledger.get_plan(USER_ID).requests_used == 1
    assert job_store.get_awaiting(USER_ID) is job
    assert not fetcher.paths[0].exists()

    # A single status message is edited through every stage
    assert len(chat.sent) == 1
    assert chat.sent[0]["text"] == messages.RECEIVED
    final = chat.last_status
    assert final["message_id"] == chat.sent[0]["message_id"]
    assert "ООО «Ромашка» (Исполнитель)" in final["text"]
    assert [b.callback_data for row in final["keyboard"] for b in row] == [
        f"select_party:{USER_ID}:party1", f"select_party:{USER_ID}:party2",
    ]
    # Two free requests left
    assert "осталось проверок: 2" in final["text"]


async def test_party_selection_delivers_report(make_pipeline, chat, job_store, contract_analysis):
    pipeline, _ = make_pipeline(analyzer=FakeAnalyzer(result=contract_analysis))
    job = await pipeline.handle_upload(_upload())
    sent_before = len(chat.sent)

    delivered = await pipeline.select_party(_callback(f"select_party:{USER_ID}:party2"))

    assert delivered is job
    assert job.state == JobState.DELIVERED
    assert job_store.get_awaiting(USER_ID) is None
    texts = [m["text"] for m in chat.sent[sent_before:]]
    assert "Основные условия договора" in texts[0]
    assert "Анализ для стороны: ООО «Лютик» (Заказчик)" in texts[1]
    assert "Нет сроков оказания услуг" in texts[1]
    assert texts[-1] == messages.FORWARD_HINT


async def test_selection_by_another_user_is_refused(make_pipeline, chat, job_store, contract_analysis):
    pipeline, _ = make_pipeline(analyzer=FakeAnalyzer(result=contract_analysis))
    job = await pipeline.handle_upload(_upload())

    assert await pipeline.select_party(_callback(f"select_party:{USER_ID}:party1", user_id="999")) is None
    assert chat.answers[-1]["show_alert"] is True
    assert job.state == JobState.AWAITING_PARTY_SELECTION


async def test_expired_selection(make_pipeline, chat):
    pipeline, _ = make_pipeline()
    assert await pipeline.select_party(_callback(f"select_party:{USER_ID}:party1")) is None
    assert chat.answers[-1]["text"] == messages.SELECTION_EXPIRED


async def test_newer_analysis_wins_party_selection(make_pipeline, chat, job_store, contract_analysis):
    pipeline, _ = make_pipeline(analyzer=FakeAnalyzer(result=contract_analysis))
    first = await pipeline.handle_upload(_upload(file_id="file-1"))

    other = dict(ANALYSIS_PAYLOAD, party1={"name": "ИП Петров", "role": "Продавец"})
    pipeline.analyzer = FakeAnalyzer(result=ContractAnalysis(details=AnalysisDetails.model_validate(other)))
    second = await pipeline.handle_upload(_upload(file_id="file-2"))

    assert job_store.get_awaiting(USER_ID) is second
    sent_before = len(chat.sent)
    delivered = await pipeline.select_party(_callback(f"select_party:{USER_ID}:party1"))
    assert delivered is second
    assert first.state == JobState.AWAITING_PARTY_SELECTION
    assert "ИП Петров" in chat.sent[sent_before + 1]["text"]


async def test_short_text_is_rejected_without_analysis(make_pipeline, chat, ledger, job_store):
    analyzer = FakeAnalyzer()
    pipeline, _ = make_pipeline(content=SHORT_TEXT, analyzer=analyzer)

    job = await pipeline.handle_upload(_upload("note.txt"))

    assert job.state == JobState.REJECTED_STRUCTURE
    assert analyzer.calls == []
    assert ledger.get_plan(USER_ID).requests_used == 0
    status = chat.last_status
    assert status["text"] == messages.DEGRADED_DOCUMENT
    assert status["keyboard"][0][0].callback_data == f"process_as_text:{job.job_id}"
    assert job_store.get_pending(job.job_id) is job


async def test_process_as_text_resumes_analysis(make_pipeline, chat, ledger, job_store, contract_analysis):
    analyzer = FakeAnalyzer(result=contract_analysis)
    pipeline, fetcher = make_pipeline(content=SHORT_TEXT, analyzer=analyzer)
    job = await pipeline.handle_upload(_upload("note.txt"))

    resumed = await pipeline.process_as_text(_callback(f"process_as_text:{job.job_id}"))

    assert resumed is job
    assert job.state == JobState.AWAITING_PARTY_SELECTION
    assert analyzer.calls == [SHORT_TEXT]
    assert len(fetcher.calls) == 1
    assert ledger.get_plan(USER_ID).requests_used == 1
    assert job_store.get_pending(job.job_id) is None


async def test_invoice_is_rejected_and_can_be_forced(make_pipeline, chat, ledger, contract_analysis):
    analyzer = FakeAnalyzer(result=contract_analysis)
    pipeline, _ = make_pipeline(content=INVOICE_TEXT, analyzer=analyzer)

    job = await pipeline.handle_upload(_upload("scan_0001.txt"))

    assert job.state == JobState.REJECTED_CLASSIFICATION
    assert job.classification.kind == "invoice"
    assert analyzer.calls == []
    assert chat.last_status["keyboard"][0][0].callback_data == f"force_contract:{job.job_id}"

    # The process-as-text button does not apply to a classification rejection
    assert await pipeline.process_as_text(_callback(f"process_as_text:{job.job_id}")) is None
    assert chat.answers[-1]["text"] == messages.JOB_EXPIRED

    resumed = await pipeline.force_contract(_callback(f"force_contract:{job.job_id}"))
    assert resumed.state == JobState.AWAITING_PARTY_SELECTION
    assert len(analyzer.calls) == 1
    assert ledger.get_plan(USER_ID).requests_used == 1


async def test_force_contract_with_unknown_job(make_pipeline, chat):
    pipeline, _ = make_pipeline()
    assert await pipeline.force_contract(_callback("force_contract:d123_abcd")) is None
    assert chat.answers[-1] == {"callback_id": "cb-1", "text": messages.JOB_EXPIRED, "show_alert": True}


async def test_caption_forces_analysis_of_invoice(make_pipeline, contract_analysis):
    analyzer = FakeAnalyzer(result=contract_analysis)
    pipeline, _ = make_pipeline(content=INVOICE_TEXT, analyzer=analyzer)

    job = await pipeline.handle_upload(_upload("scan.txt", caption="это договор"))

    assert job.force_mode is True
    assert JobState.STRUCTURE_CHECK not in job.history
    assert job.state == JobState.AWAITING_PARTY_SELECTION
    assert len(analyzer.calls) == 1


async def test_file_name_overrides_classifier(make_pipeline, contract_analysis):
    analyzer = FakeAnalyzer(result=contract_analysis)
    pipeline, _ = make_pipeline(content=INVOICE_TEXT, analyzer=analyzer)

    job = await pipeline.handle_upload(_upload("Договор_поставки.txt"))

    assert job.classification.is_contract is False
    assert job.state == JobState.AWAITING_PARTY_SELECTION


async def test_quota_is_checked_before_download(make_pipeline, chat, ledger):
    for _ in range(3):
        ledger.register_usage(USER_ID)
    analyzer = FakeAnalyzer()
    pipeline, fetcher = make_pipeline(analyzer=analyzer)

    job = await pipeline.handle_upload(_upload())

    assert job.state == JobState.FAILED
    assert job.failure_reason == "limit_reached"
    assert fetcher.calls == []
    assert analyzer.calls == []
    assert chat.sent[-1]["text"] == messages.LIMIT_REACHED


async def test_unpaid_subscription_is_denied(make_pipeline, chat, ledger):
    ledger.change_plan(USER_ID, "BASIC")
    pipeline, fetcher = make_pipeline()

    job = await pipeline.handle_upload(_upload())

    assert job.failure_reason == "subscription_inactive"
    assert chat.sent[-1]["text"] == messages.SUBSCRIPTION_INACTIVE
    assert fetcher.calls == []


async def test_quota_denial_survives_chat_errors(make_pipeline, chat, ledger, monkeypatch):
    ledger.change_plan(USER_ID, "BASIC")
    pipeline, fetcher = make_pipeline()

    async def broken_send(chat_id, text, keyboard=None):
        raise ConnectionError("telegram is unreachable")

    monkeypatch.setattr(chat, "send_message", broken_send)

    job = await pipeline.handle_upload(_upload())

    assert job.state == JobState.FAILED
    assert job.failure_reason == "subscription_inactive"
    assert fetcher.calls == []


async def test_unsupported_extension_is_refused_before_download(make_pipeline, chat):
    pipeline, fetcher = make_pipeline()

    job = await pipeline.handle_upload(_upload("archive.zip"))

    assert job.state == JobState.FAILED
    assert job.failure_reason == "UnsupportedFormat"
    assert fetcher.calls == []


async def test_oversized_upload_is_refused(make_pipeline):
    pipeline, fetcher = make_pipeline()
    job = await pipeline.handle_upload(_upload(file_size=31 * 1024 * 1024))
    assert job.failure_reason == "DownloadTooLarge"
    assert fetcher.calls == []


async def test_download_failure_edits_status(make_pipeline, chat):
    pipeline, _ = make_pipeline(content=DownloadFailure("telegram timeout"))

    job = await pipeline.handle_upload(_upload())

    assert job.state == JobState.FAILED
    assert chat.last_status["text"] == messages.ERROR_MESSAGES[DownloadFailure]


async def test_analyzer_error_does_not_debit(make_pipeline, chat, ledger):
    pipeline, _ = make_pipeline(analyzer=FakeAnalyzer(error=UpstreamError("503")))

    job = await pipeline.handle_upload(_upload())

    assert job.state == JobState.FAILED
    assert job.failure_reason == "UpstreamError"
    assert ledger.get_plan(USER_ID).requests_used == 0
    assert chat.last_status["message_id"] == chat.sent[0]["message_id"]
    assert chat.last_status["text"] == messages.ERROR_MESSAGES[UpstreamError]


async def test_not_a_contract_is_not_debited(make_pipeline, chat, ledger):
    analyzer = FakeAnalyzer(result=NotAContract(reason="Это письмо"))
    pipeline, _ = make_pipeline(analyzer=analyzer)

    job = await pipeline.handle_upload(_upload())

    assert job.state == JobState.FAILED
    assert job.failure_reason == "not_a_contract"
    assert ledger.get_plan(USER_ID).requests_used == 0
    assert "Это письмо" in chat.last_status["text"]


async def test_degraded_analysis_is_flagged_incomplete(make_pipeline, chat, analysis_details):
    analyzer = FakeAnalyzer(result=DegradedAnalysis(details=analysis_details, missing_sections=("conclusion",)))
    pipeline, _ = make_pipeline(analyzer=analyzer)

    job = await pipeline.handle_upload(_upload())

    assert job.incomplete is True
    assert job.state == JobState.AWAITING_PARTY_SELECTION
    assert messages.INCOMPLETE_ANALYSIS in chat.last_status["text"]


async def test_role_hint_delivers_single_report(make_pipeline, chat, ledger, job_store):
    analyzer = FakeAnalyzer(role_report="Для заказчика договор рискованный.")
    pipeline, _ = make_pipeline(analyzer=analyzer)

    job = await pipeline.handle_upload(_upload(caption="я заказчик"))

    assert job.state == JobState.DELIVERED
    assert analyzer.role_calls[0][1] == "Заказчик"
    assert analyzer.calls == []
    assert ledger.get_plan(USER_ID).requests_used == 1
    assert job_store.get_awaiting(USER_ID) is None
    assert any("Для заказчика договор рискованный." in m["text"] for m in chat.sent)


async def test_slow_download_is_narrated(make_pipeline, chat, contract_analysis):
    pipeline, _ = make_pipeline(analyzer=FakeAnalyzer(result=contract_analysis),
                                fetch_delay=0.1, download_notice=0.01)

    job = await pipeline.handle_upload(_upload())

    texts = [e["text"] for e in chat.edits]
    assert messages.DOWNLOADING_SLOW in texts
    assert messages.ANALYZING_SLOW not in texts
    # The final result is not overwritten by a late notice
    assert job.state == JobState.AWAITING_PARTY_SELECTION
    assert "Анализ договора завершен" in chat.last_status["text"]


def test_invalid_transition_is_rejected():
    job = DocumentJob(job_id="d1_abcd", user_id=USER_ID, chat_id=CHAT_ID,
                      source_file=SourceFile("f", "a.txt", ".txt"))
    with pytest.raises(InvalidTransition):
        job.transition(JobState.ANALYZING)
    job.fail("boom")
    assert job.state == JobState.FAILED
    with pytest.raises(InvalidTransition):
        job.transition(JobState.DOWNLOADING)

"""Document pipeline: upload -> extraction -> gates -> analysis -> party selection.

Each upload becomes a ``DocumentJob`` driven through an explicit state
machine.  Every stage failure is caught here and turned into an edit of the
job's status message; unexpected errors are logged with the job context.
"""
import logging
import random
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from config import settings
from constants import MAX_FILE_SIZE_MB, SUPPORTED_FILE_TYPES
from services.analyzer import (
    AnalyzerError,
    Analysis,
    ContractAnalysis,
    DegradedAnalysis,
    DocumentAnalyzer,
    NotAContract,
)
from services.chat_gateway import Button, CallbackEvent, ChatGateway, FileFetcher, Keyboard, UploadEvent
from services.contract_classifier import (
    ClassificationResult,
    caption_forces_contract,
    classify,
    extract_role_hint,
    filename_hints_contract,
    has_structure,
)
from services.quota_ledger import QuotaLedger
from utils import messages
from utils.event_logger import log_event
from utils.report_formatter import (
    escape_markdown,
    format_party_report,
    format_role_report,
    format_terms_report,
    party_label,
    party_selection_keyboard,
    split_message,
)
from utils.text_extractor import (
    DownloadTooLarge,
    TextExtractionError,
    UnsupportedFormat,
    extract_from_path_async,
)
from workers.job_store import JobStore
from workers.progress_narrator import ProgressNarrator

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    UPLOADED = "uploaded"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    STRUCTURE_CHECK = "structure_check"
    CLASSIFYING = "classifying"
    ANALYZING = "analyzing"
    AWAITING_PARTY_SELECTION = "awaiting_party_selection"
    DELIVERED = "delivered"
    REJECTED_STRUCTURE = "rejected_structure"
    REJECTED_CLASSIFICATION = "rejected_classification"
    FAILED = "failed"


_TRANSITIONS = {
    JobState.UPLOADED: {JobState.DOWNLOADING},
    JobState.DOWNLOADING: {JobState.EXTRACTING},
    # Forced jobs skip both gates
    JobState.EXTRACTING: {JobState.STRUCTURE_CHECK, JobState.ANALYZING},
    JobState.STRUCTURE_CHECK: {JobState.CLASSIFYING, JobState.REJECTED_STRUCTURE},
    JobState.CLASSIFYING: {JobState.ANALYZING, JobState.REJECTED_CLASSIFICATION},
    JobState.REJECTED_STRUCTURE: {JobState.ANALYZING},
    JobState.REJECTED_CLASSIFICATION: {JobState.ANALYZING},
    # Role-hinted jobs deliver a single report without party selection
    JobState.ANALYZING: {JobState.AWAITING_PARTY_SELECTION, JobState.DELIVERED},
    JobState.AWAITING_PARTY_SELECTION: {JobState.DELIVERED},
    JobState.DELIVERED: set(),
    JobState.FAILED: set(),
}

TERMINAL_STATES = frozenset({JobState.DELIVERED, JobState.FAILED})


class InvalidTransition(Exception):
    pass


def _base36(number: int) -> str:
    digits = string.digits + string.ascii_lowercase
    out = ""
    while number:
        number, rem = divmod(number, 36)
        out = digits[rem] + out
    return out or "0"


def new_job_id() -> str:
    """Short id that fits in Telegram's 64-byte callback data."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=4))
    return f"d{_base36(int(time.time() * 1000))}_{suffix}"


@dataclass
class SourceFile:
    file_id: str
    file_name: str
    extension: str
    file_size: Optional[int] = None


@dataclass
class DocumentJob:
    job_id: str
    user_id: str
    chat_id: int
    source_file: SourceFile
    force_mode: bool = False
    name_hinted: bool = False
    role_hint: Optional[str] = None
    state: JobState = JobState.UPLOADED
    history: List[JobState] = field(default_factory=list)
    status_message_id: Optional[int] = None
    extracted_text: Optional[str] = None
    ocr_used: bool = False
    structure_ok: Optional[bool] = None
    classification: Optional[ClassificationResult] = None
    analysis: Optional[Analysis] = None
    failure_reason: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    def transition(self, new_state: JobState) -> None:
        if new_state == JobState.FAILED:
            allowed = self.state not in TERMINAL_STATES
        else:
            allowed = new_state in _TRANSITIONS[self.state]
        if not allowed:
            raise InvalidTransition(f"Job {self.job_id}: {self.state.value} -> {new_state.value}")
        self.history.append(self.state)
        self.state = new_state

    def fail(self, reason: str) -> None:
        self.failure_reason = reason
        if self.state not in TERMINAL_STATES:
            self.transition(JobState.FAILED)

    @property
    def incomplete(self) -> bool:
        return self.ocr_used or isinstance(self.analysis, DegradedAnalysis)


class DocumentPipeline:
    """Drives uploads and button callbacks through the document job state machine."""

    def __init__(self, chat: ChatGateway, fetcher: FileFetcher, analyzer: DocumentAnalyzer,
                 ledger: QuotaLedger, jobs: Optional[JobStore] = None,
                 download_notice: Optional[float] = None, extract_notice: Optional[float] = None,
                 analysis_notice: Optional[float] = None, extraction_timeout: Optional[float] = None):
        self.chat = chat
        self.fetcher = fetcher
        self.analyzer = analyzer
        self.ledger = ledger
        self.jobs = jobs if jobs is not None else JobStore()
        self.download_notice = download_notice if download_notice is not None else settings.DOWNLOAD_NOTICE_SECONDS
        self.extract_notice = extract_notice if extract_notice is not None else settings.EXTRACT_NOTICE_SECONDS
        self.analysis_notice = analysis_notice if analysis_notice is not None else settings.ANALYSIS_NOTICE_SECONDS
        self.extraction_timeout = extraction_timeout or settings.EXTRACTION_TIMEOUT_SECONDS

    # ── helpers ──

    async def _status(self, job: DocumentJob, text: str, keyboard: Optional[Keyboard] = None) -> None:
        """Edit the job's status message, sending one first if there is none."""
        if job.status_message_id is None:
            job.status_message_id = await self.chat.send_message(job.chat_id, text, keyboard)
        else:
            await self.chat.edit_message(job.chat_id, job.status_message_id, text, keyboard)

    async def _send_long(self, chat_id: int, text: str) -> None:
        for part in split_message(text):
            await self.chat.send_message(chat_id, part)

    async def _fail(self, job: DocumentJob, error: BaseException) -> None:
        if isinstance(error, (TextExtractionError, AnalyzerError)):
            logger.warning(f"Job {job.job_id} (user {job.user_id}, {job.source_file.file_name}) "
                           f"failed in {job.state.value}: {error}")
        else:
            logger.error(f"Unexpected error in job {job.job_id} (user {job.user_id}, "
                         f"{job.source_file.file_name}, state {job.state.value}): {error}", exc_info=error)
        job.fail(type(error).__name__)
        log_event(job.user_id, "job_failed", job_id=job.job_id, reason=job.failure_reason)
        try:
            await self._status(job, messages.message_for_error(error))
        except Exception as e:
            logger.error(f"Could not report failure of job {job.job_id} to chat {job.chat_id}: {e}")

    async def _deny(self, job: DocumentJob, reason: str) -> None:
        logger.info(f"Job {job.job_id} denied by quota: {reason}")
        job.fail(reason)
        log_event(job.user_id, "quota_denied", job_id=job.job_id, reason=reason)
        try:
            await self._status(job, messages.quota_message(reason))
        except Exception as e:
            logger.error(f"Could not report quota denial of job {job.job_id} to chat {job.chat_id}: {e}")

    # ── upload ──

    async def handle_upload(self, event: UploadEvent) -> DocumentJob:
        """Run a freshly uploaded document as far as the pipeline can take it."""
        source = SourceFile(
            file_id=event.file_id,
            file_name=event.file_name,
            extension=Path(event.file_name).suffix.lower(),
            file_size=event.file_size,
        )
        job = DocumentJob(
            job_id=new_job_id(),
            user_id=str(event.user_id),
            chat_id=event.chat_id,
            source_file=source,
            force_mode=caption_forces_contract(event.caption),
            name_hinted=filename_hints_contract(event.file_name),
            role_hint=extract_role_hint(event.caption),
        )
        logger.info(f"Job {job.job_id}: {source.file_name} from user {job.user_id} "
                    f"(force={job.force_mode}, name_hint={job.name_hinted}, role={job.role_hint})")
        log_event(job.user_id, "document_received", job_id=job.job_id, file_name=source.file_name,
                  force_mode=job.force_mode)

        narrator = None
        try:
            decision = self.ledger.can_make_request(job.user_id)
            if not decision.allowed:
                await self._deny(job, decision.reason)
                return job
            if source.extension not in SUPPORTED_FILE_TYPES:
                raise UnsupportedFormat(f"Unsupported file type: {source.extension}")
            if source.file_size and source.file_size > MAX_FILE_SIZE_MB * 1024 * 1024:
                raise DownloadTooLarge(f"File is {source.file_size} bytes")

            await self._status(job, messages.RECEIVED)
            narrator = ProgressNarrator(self.chat, job.chat_id, job.status_message_id)
            await self._download_and_extract(job, narrator)
            if await self._passes_gates(job):
                await self._analyze(job, narrator)
        except Exception as e:
            await self._fail(job, e)
        finally:
            if narrator is not None:
                narrator.cancel_all()
        return job

    async def _download_and_extract(self, job: DocumentJob, narrator: ProgressNarrator) -> None:
        job.transition(JobState.DOWNLOADING)
        async with narrator.stage(self.download_notice, messages.DOWNLOADING_SLOW):
            path = await self.fetcher.fetch(job.source_file.file_id, job.source_file.file_name)

        job.transition(JobState.EXTRACTING)
        await self._status(job, messages.EXTRACTING)
        async with narrator.stage(self.extract_notice, messages.EXTRACTING_SLOW):
            result = await extract_from_path_async(path, job.source_file.file_name, self.extraction_timeout)

        job.extracted_text = result.text
        job.ocr_used = result.ocr_used
        log_event(job.user_id, "text_extracted", job_id=job.job_id, chars=len(result.text),
                  method=result.method, truncated=result.truncated)

    async def _passes_gates(self, job: DocumentJob) -> bool:
        """Structure and contract gates; rejected jobs are parked for an explicit retry."""
        if job.force_mode:
            logger.info(f"Job {job.job_id}: forced, skipping structure and contract checks")
            return True

        job.transition(JobState.STRUCTURE_CHECK)
        job.structure_ok = has_structure(job.extracted_text)
        if not job.structure_ok:
            job.transition(JobState.REJECTED_STRUCTURE)
            self.jobs.put_pending(job)
            log_event(job.user_id, "structure_rejected", job_id=job.job_id)
            await self._status(job, messages.DEGRADED_DOCUMENT, [[
                Button(text="📝 Обработать как текст", callback_data=f"process_as_text:{job.job_id}"),
            ]])
            return False

        job.transition(JobState.CLASSIFYING)
        await self._status(job, messages.CLASSIFYING)
        job.classification = classify(job.extracted_text)
        if job.classification.is_contract:
            return True
        if job.name_hinted:
            logger.info(f"Job {job.job_id}: classifier said '{job.classification.kind}', "
                        f"but the file name names a contract")
            return True

        job.transition(JobState.REJECTED_CLASSIFICATION)
        self.jobs.put_pending(job)
        log_event(job.user_id, "classification_rejected", job_id=job.job_id,
                  kind=job.classification.kind, contract_score=job.classification.contract_score,
                  invoice_score=job.classification.invoice_score)
        await self._status(
            job,
            messages.NOT_A_CONTRACT.format(reason=escape_markdown(job.classification.reason)),
            [[Button(text="✅ Это договор, проанализировать", callback_data=f"force_contract:{job.job_id}")]],
        )
        return False

    async def _analyze(self, job: DocumentJob, narrator: ProgressNarrator) -> None:
        decision = self.ledger.can_make_request(job.user_id)
        if not decision.allowed:
            await self._deny(job, decision.reason)
            return

        job.transition(JobState.ANALYZING)
        text = job.extracted_text
        large = len(text) > settings.LARGE_DOCUMENT_CHARS
        await self._status(job, messages.ANALYZING_LARGE if large else messages.ANALYZING)

        async with narrator.stage(self.analysis_notice, messages.ANALYZING_SLOW):
            if job.role_hint:
                report = await self.analyzer.analyze_for_role(text, job.role_hint)
            else:
                analysis = await self.analyzer.analyze(text)

        if job.role_hint:
            info = self.ledger.register_usage(job.user_id)
            job.transition(JobState.DELIVERED)
            log_event(job.user_id, "analysis_delivered", job_id=job.job_id, role=job.role_hint)
            await self._status(job, "✅ *Анализ договора завершен*" + messages.remaining_note(info.requests_remaining))
            await self._send_long(job.chat_id, format_role_report(job.role_hint, report))
            await self.chat.send_message(job.chat_id, messages.FORWARD_HINT)
            return

        job.analysis = analysis
        if isinstance(analysis, NotAContract):
            job.fail("not_a_contract")
            log_event(job.user_id, "analysis_not_contract", job_id=job.job_id)
            await self._status(job, messages.NO_PARTIES.format(reason=escape_markdown(analysis.reason)))
            return
        if not isinstance(analysis, (ContractAnalysis, DegradedAnalysis)):
            raise TypeError(f"Unexpected analysis result: {analysis!r}")

        info = self.ledger.register_usage(job.user_id)
        job.transition(JobState.AWAITING_PARTY_SELECTION)
        self.jobs.put_awaiting(job)
        log_event(job.user_id, "analysis_completed", job_id=job.job_id, incomplete=job.incomplete)

        details = analysis.details
        text = messages.PARTY_SELECTION.format(
            party1=escape_markdown(party_label(details.party1)),
            party2=escape_markdown(party_label(details.party2)),
        )
        if job.incomplete:
            text += messages.INCOMPLETE_ANALYSIS
        text += messages.remaining_note(info.requests_remaining)
        await self._status(job, text, party_selection_keyboard(job.user_id, details))

    # ── callbacks ──

    async def _resume(self, event: CallbackEvent, expected: JobState) -> Optional[DocumentJob]:
        """Re-enter ``ANALYZING`` for a parked job with the already extracted text."""
        job_id = event.data.split(":", 1)[1] if ":" in event.data else ""
        job = self.jobs.get_pending(job_id)
        if job is None or job.user_id != str(event.user_id) or job.state != expected:
            await self.chat.answer_callback(event.callback_id, messages.JOB_EXPIRED, show_alert=True)
            return None

        self.jobs.pop_pending(job_id)
        await self.chat.answer_callback(event.callback_id)
        job.force_mode = True
        if event.message_id is not None:
            job.status_message_id = event.message_id
        log_event(job.user_id, "forced_analysis", job_id=job.job_id, from_state=expected.value)

        narrator = ProgressNarrator(self.chat, job.chat_id, job.status_message_id)
        try:
            await self._analyze(job, narrator)
        except Exception as e:
            await self._fail(job, e)
        finally:
            narrator.cancel_all()
        return job

    async def force_contract(self, event: CallbackEvent) -> Optional[DocumentJob]:
        """User confirmed that a rejected document is a contract."""
        return await self._resume(event, JobState.REJECTED_CLASSIFICATION)

    async def process_as_text(self, event: CallbackEvent) -> Optional[DocumentJob]:
        """User asked to analyse a structure-rejected document anyway."""
        return await self._resume(event, JobState.REJECTED_STRUCTURE)

    async def select_party(self, event: CallbackEvent) -> Optional[DocumentJob]:
        """Deliver the report for the chosen party (``select_party:<user_id>:party1|party2``)."""
        parts = event.data.split(":")
        if len(parts) != 3 or parts[2] not in ("party1", "party2"):
            await self.chat.answer_callback(event.callback_id, messages.SELECTION_EXPIRED, show_alert=True)
            return None
        _, owner_id, party_key = parts
        if owner_id != str(event.user_id):
            await self.chat.answer_callback(event.callback_id, "Эта кнопка предназначена другому пользователю.",
                                            show_alert=True)
            return None

        job = self.jobs.get_awaiting(owner_id)
        if job is None:
            await self.chat.answer_callback(event.callback_id, messages.SELECTION_EXPIRED, show_alert=True)
            return None

        await self.chat.answer_callback(event.callback_id)
        analysis = job.analysis
        if isinstance(analysis, (ContractAnalysis, DegradedAnalysis)):
            details = analysis.details
        else:
            raise TypeError(f"Job {job.job_id} is awaiting selection without an analysis")

        try:
            await self._send_long(job.chat_id, format_terms_report(details))
            await self._send_long(job.chat_id, format_party_report(details, party_key))
            await self.chat.send_message(job.chat_id, messages.FORWARD_HINT)
        except Exception as e:
            logger.error(f"Delivering report for job {job.job_id} failed: {e}", exc_info=e)
            await self.chat.send_message(job.chat_id, messages.GENERIC_ERROR)
            return job

        job.transition(JobState.DELIVERED)
        self.jobs.pop_awaiting(owner_id)
        log_event(job.user_id, "party_selected", job_id=job.job_id, party=party_key)
        return job

"""Telegram handlers for document / photo uploads and the analysis buttons."""
import logging

from aiogram import Dispatcher, F
from aiogram.types import CallbackQuery, Message

from services.chat_gateway import CallbackEvent, UploadEvent
from workers.document_pipeline import DocumentPipeline

logger = logging.getLogger(__name__)


def _callback_event(callback: CallbackQuery) -> CallbackEvent:
    return CallbackEvent(
        callback_id=callback.id,
        user_id=str(callback.from_user.id),
        chat_id=callback.message.chat.id if callback.message else callback.from_user.id,
        message_id=callback.message.message_id if callback.message else None,
        data=callback.data or "",
    )


async def handle_document_upload(message: Message, pipeline: DocumentPipeline) -> None:
    document = message.document
    event = UploadEvent(
        user_id=str(message.from_user.id),
        chat_id=message.chat.id,
        file_id=document.file_id,
        file_name=document.file_name or "document",
        file_size=document.file_size,
        caption=message.caption,
    )
    await pipeline.handle_upload(event)


async def handle_photo_upload(message: Message, pipeline: DocumentPipeline) -> None:
    # Highest resolution is the last size
    photo = message.photo[-1]
    event = UploadEvent(
        user_id=str(message.from_user.id),
        chat_id=message.chat.id,
        file_id=photo.file_id,
        file_name=f"photo_{photo.file_unique_id}.jpg",
        file_size=photo.file_size,
        caption=message.caption,
    )
    await pipeline.handle_upload(event)


async def handle_select_party(callback: CallbackQuery, pipeline: DocumentPipeline) -> None:
    await pipeline.select_party(_callback_event(callback))


async def handle_force_contract(callback: CallbackQuery, pipeline: DocumentPipeline) -> None:
    await pipeline.force_contract(_callback_event(callback))


async def handle_process_as_text(callback: CallbackQuery, pipeline: DocumentPipeline) -> None:
    await pipeline.process_as_text(_callback_event(callback))


def register_document_handlers(dp: Dispatcher) -> None:
    """Register all document-related handlers."""
    dp.message.register(handle_document_upload, F.document)
    dp.message.register(handle_photo_upload, F.photo)
    dp.callback_query.register(handle_select_party, F.data.startswith("select_party:"))
    dp.callback_query.register(handle_force_contract, F.data.startswith("force_contract:"))
    dp.callback_query.register(handle_process_as_text, F.data.startswith("process_as_text:"))

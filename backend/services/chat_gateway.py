"""Chat transport boundary: parsed inbound events, outbound protocol, aiogram adapters."""
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol

from aiogram import Bot
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramBadRequest
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

from config import settings
from constants import MAX_FILE_SIZE_MB
from utils.text_extractor import DownloadFailure, DownloadTooLarge

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Button:
    text: str
    callback_data: Optional[str] = None
    url: Optional[str] = None


Keyboard = List[List[Button]]


@dataclass
class UploadEvent:
    user_id: str
    chat_id: int
    file_id: str
    file_name: str
    file_size: Optional[int] = None
    caption: Optional[str] = None


@dataclass
class CallbackEvent:
    callback_id: str
    user_id: str
    chat_id: int
    message_id: Optional[int]
    data: str


class ChatGateway(Protocol):
    async def send_message(self, chat_id: int, text: str, keyboard: Optional[Keyboard] = None) -> int: ...

    async def edit_message(self, chat_id: int, message_id: int, text: str,
                           keyboard: Optional[Keyboard] = None) -> None: ...

    async def answer_callback(self, callback_id: str, text: Optional[str] = None,
                              show_alert: bool = False) -> None: ...


class FileFetcher(Protocol):
    async def fetch(self, file_id: str, file_name: str) -> Path: ...


def to_markup(keyboard: Optional[Keyboard]) -> Optional[InlineKeyboardMarkup]:
    if not keyboard:
        return None
    return InlineKeyboardMarkup(inline_keyboard=[
        [InlineKeyboardButton(text=b.text, callback_data=b.callback_data, url=b.url) for b in row]
        for row in keyboard
    ])


class TelegramGateway:
    """ChatGateway over an aiogram Bot; Markdown falls back to plain text on parse errors."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def send_message(self, chat_id: int, text: str, keyboard: Optional[Keyboard] = None) -> int:
        markup = to_markup(keyboard)
        try:
            message = await self.bot.send_message(chat_id, text, parse_mode=ParseMode.MARKDOWN,
                                                  reply_markup=markup, disable_web_page_preview=True)
        except TelegramBadRequest as e:
            logger.warning(f"Markdown rejected by Telegram ({e}), resending as plain text")
            message = await self.bot.send_message(chat_id, text, reply_markup=markup,
                                                  disable_web_page_preview=True)
        return message.message_id

    async def edit_message(self, chat_id: int, message_id: int, text: str,
                           keyboard: Optional[Keyboard] = None) -> None:
        markup = to_markup(keyboard)
        try:
            await self.bot.edit_message_text(text=text, chat_id=chat_id, message_id=message_id,
                                             parse_mode=ParseMode.MARKDOWN, reply_markup=markup,
                                             disable_web_page_preview=True)
        except TelegramBadRequest as e:
            if "message is not modified" in str(e):
                return
            logger.warning(f"Cannot edit message {message_id} with Markdown ({e}), retrying as plain text")
            await self.bot.edit_message_text(text=text, chat_id=chat_id, message_id=message_id,
                                             reply_markup=markup, disable_web_page_preview=True)

    async def answer_callback(self, callback_id: str, text: Optional[str] = None,
                              show_alert: bool = False) -> None:
        await self.bot.answer_callback_query(callback_id, text=text, show_alert=show_alert)


class TelegramFileFetcher:
    """Downloads Telegram files into the temp directory."""

    def __init__(self, bot: Bot, temp_dir: Optional[str] = None):
        self.bot = bot
        self.temp_dir = temp_dir or settings.TEMP_DIR

    async def fetch(self, file_id: str, file_name: str) -> Path:
        os.makedirs(self.temp_dir, exist_ok=True)
        try:
            file_info = await self.bot.get_file(file_id)
        except TelegramBadRequest as e:
            # Bot API refuses files above 20 MB with "file is too big"
            if "too big" in str(e).lower():
                raise DownloadTooLarge(f"Telegram refused to serve file {file_name}: {e}") from e
            raise DownloadFailure(f"Cannot resolve file {file_id}: {e}") from e

        if file_info.file_size and file_info.file_size > MAX_FILE_SIZE_MB * 1024 * 1024:
            raise DownloadTooLarge(f"File {file_name} is {file_info.file_size} bytes")

        suffix = Path(file_name).suffix.lower()
        fd, tmp_path = tempfile.mkstemp(prefix="upload_", suffix=suffix, dir=self.temp_dir)
        os.close(fd)
        try:
            await self.bot.download_file(file_info.file_path, destination=tmp_path)
        except Exception as e:
            Path(tmp_path).unlink(missing_ok=True)
            raise DownloadFailure(f"Download of {file_name} failed: {e}") from e
        logger.info(f"Downloaded {file_name} to {tmp_path}")
        return Path(tmp_path)

"""
Master handler registration: wires every handler group into the dispatcher.
"""
from aiogram import Dispatcher

from handlers.commands import register_command_handlers, register_fallback_handlers
from handlers.documents import register_document_handlers
from handlers.plans import register_plan_handlers


def register_handlers(dp: Dispatcher) -> None:
    register_command_handlers(dp)
    register_plan_handlers(dp)
    register_document_handlers(dp)
    register_fallback_handlers(dp)

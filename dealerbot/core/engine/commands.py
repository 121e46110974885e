# dealerbot/core/engine/commands.py
"""
Global commands, recognised before any node runs.

Order of precedence: data-rights requests, exit, restart, greeting.
Exit and restart words must be the whole message ("sair", "reiniciar");
greetings may start a longer message ("oi, tudo bem?").
"""
from __future__ import annotations

import re
import threading
import time
import unicodedata
from enum import Enum
from typing import Callable, Dict, Optional


class CommandKind(str, Enum):
    DELETE_DATA = "delete_data"
    EXPORT_DATA = "export_data"
    EXIT = "exit"
    RESTART = "restart"
    GREETING = "greeting"


EXIT_COMMANDS = frozenset({"sair", "encerrar", "tchau", "bye", "adeus", "exit", "quit"})
RESTART_COMMANDS = frozenset({
    "reiniciar", "recomecar", "voltar", "cancelar", "reset", "nova busca", "restart", "start over",
})
GREETINGS = ("oi", "ola", "bom dia", "boa tarde", "boa noite", "hey", "hello", "hi", "e ai")

CONFIRM_YES = frozenset({"sim", "s", "yes", "y", "confirmo", "pode excluir"})
CONFIRM_NO = frozenset({"nao", "n", "no", "cancelar", "cancel"})

_DELETE_RE = re.compile(
    r"\b(excluir|deletar|apagar|remover)\s+(os\s+|todos\s+os\s+)?meus\s+dados\b"
    r"|\bdelete\s+my\s+data\b"
)
_EXPORT_RE = re.compile(
    r"\b(exportar|baixar|ver)\s+(os\s+|todos\s+os\s+)?meus\s+dados\b"
    r"|\bexport\s+my\s+data\b"
)
_TRAILING_PUNCT_RE = re.compile(r"[\s.!?,;:]+$")


def normalize_command(message: str) -> str:
    text = unicodedata.normalize("NFD", (message or "").strip().lower())
    text = "".join(c for c in text if unicodedata.category(c) != "Mn")
    return _TRAILING_PUNCT_RE.sub("", text)


def is_greeting(text: str) -> bool:
    for greeting in GREETINGS:
        if text == greeting:
            return True
        if text.startswith(greeting) and text[len(greeting)] in " ,!":
            return True
    return False


def detect_command(message: str) -> Optional[CommandKind]:
    text = normalize_command(message)
    if not text:
        return None
    if _DELETE_RE.search(text):
        return CommandKind.DELETE_DATA
    if _EXPORT_RE.search(text):
        return CommandKind.EXPORT_DATA
    if text in EXIT_COMMANDS:
        return CommandKind.EXIT
    if text in RESTART_COMMANDS:
        return CommandKind.RESTART
    if is_greeting(text):
        return CommandKind.GREETING
    return None


def parse_confirmation(message: str) -> Optional[bool]:
    """True for yes, False for no, None when the answer is neither."""
    text = normalize_command(message)
    if text in CONFIRM_YES:
        return True
    if text in CONFIRM_NO:
        return False
    return None


class PendingConfirmations:
    """
    Identities with an armed data-deletion confirmation.

    Process-wide and shared by concurrent conversations, so every access
    goes through one lock.  Entries expire after ``ttl_seconds``.
    """

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._pending: Dict[str, float] = {}
        self._lock = threading.Lock()

    def arm(self, identity: str) -> None:
        with self._lock:
            self._pending[identity] = self._clock() + self.ttl_seconds

    def is_pending(self, identity: str) -> bool:
        with self._lock:
            expires_at = self._pending.get(identity)
            if expires_at is None:
                return False
            if self._clock() >= expires_at:
                del self._pending[identity]
                return False
            return True

    def clear(self, identity: str) -> None:
        with self._lock:
            self._pending.pop(identity, None)

    def cleanup(self) -> int:
        """Drop expired entries. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, v in self._pending.items() if now >= v]
            for key in expired:
                del self._pending[key]
            return len(expired)

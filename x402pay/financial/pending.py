"""
Pending Actions

Remembers unpaid requests that answered 402 so the same call can be replayed
once a signed payment exists, and guards each payment id against concurrent
submission.
"""

from __future__ import annotations

import secrets
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional

from loguru import logger

from x402pay.utils.exceptions import NotFoundError, PendingActionExists


def new_payment_id() -> str:
    """Client-side payment id: pay_<unix ms>_<random hex>"""
    return f"pay_{int(time.time() * 1000)}_{secrets.token_hex(6)}"


def build_request_kwargs(body: Any = None, files: Any = None) -> Dict[str, Any]:
    """httpx.AsyncClient.request keyword arguments for an opaque body"""
    if files is not None:
        return {"data": body, "files": files}
    if body is None:
        return {}
    if isinstance(body, (bytes, str)):
        return {"content": body}
    return {"json": body}


@dataclass(frozen=True)
class PendingAction:
    """An unpaid request waiting for a signature.

    ``body`` is opaque: bytes/str are sent verbatim, anything else as JSON.
    When ``files`` is set the request is multipart and ``body`` holds the form fields.
    """
    payment_id: str
    url: str
    method: str = "POST"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    files: Any = None
    description: str = ""
    resource_id: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    def request_kwargs(self) -> Dict[str, Any]:
        return build_request_kwargs(self.body, self.files)


class PendingActionStore:
    """Registry of pending actions keyed by payment id"""

    def __init__(self):
        self._actions: Dict[str, PendingAction] = {}
        self._lock = threading.Lock()

    def register(
        self,
        url: str,
        method: str = "POST",
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        files: Any = None,
        description: str = "",
        resource_id: Optional[str] = None,
        payment_id: Optional[str] = None,
    ) -> PendingAction:
        """
        Store an unpaid call.

        Raises:
            PendingActionExists: payment_id is already pending
        """
        action = PendingAction(
            payment_id=payment_id or new_payment_id(),
            url=url,
            method=method.upper(),
            headers=dict(headers or {}),
            body=body,
            files=files,
            description=description,
            resource_id=resource_id,
        )
        with self._lock:
            if action.payment_id in self._actions:
                raise PendingActionExists(action.payment_id)
            self._actions[action.payment_id] = action
        logger.debug(f"Registered pending action {action.payment_id}: {action.method} {action.url}")
        return action

    def get(self, payment_id: str) -> PendingAction:
        with self._lock:
            action = self._actions.get(payment_id)
        if action is None:
            raise NotFoundError("Pending action", payment_id)
        return action

    def discard(self, payment_id: str) -> Optional[PendingAction]:
        """Remove an entry (settled or abandoned); missing ids are ignored"""
        with self._lock:
            return self._actions.pop(payment_id, None)

    def __contains__(self, payment_id: object) -> bool:
        with self._lock:
            return payment_id in self._actions

    def __len__(self) -> int:
        with self._lock:
            return len(self._actions)

    def __iter__(self) -> Iterator[PendingAction]:
        with self._lock:
            return iter(list(self._actions.values()))


class ProcessingGuard:
    """Set of payment ids with a settlement submission in flight"""

    def __init__(self):
        self._active: set[str] = set()
        self._lock = threading.Lock()

    def try_enter(self, payment_id: str) -> bool:
        """Claim payment_id; False when another attempt already holds it"""
        with self._lock:
            if payment_id in self._active:
                return False
            self._active.add(payment_id)
            return True

    def leave(self, payment_id: str) -> None:
        with self._lock:
            self._active.discard(payment_id)

    def __contains__(self, payment_id: object) -> bool:
        with self._lock:
            return payment_id in self._active

    def __len__(self) -> int:
        with self._lock:
            return len(self._active)

"""Approval cache for shell-command signatures."""

from __future__ import annotations

import logging
from typing import Dict

from tether.log_utils import log_event

logger = logging.getLogger(__name__)


class ApprovalCache:
    """``(conversation_id, signature) -> remember`` approvals.

    Remembered approvals last until the conversation is cleared; the others
    are consumed by the first ``is_approved`` that sees them.
    """

    def __init__(self) -> None:
        self._approvals: Dict[str, Dict[str, bool]] = {}

    def approve(self, conversation_id: str, signature: str, remember: bool) -> None:
        self._approvals.setdefault(conversation_id, {})[signature] = remember
        log_event(
            logger,
            "permission.approve",
            conversation_id=conversation_id,
            signature=signature,
            remember=remember,
        )

    def is_approved(self, conversation_id: str, signature: str) -> bool:
        approvals = self._approvals.get(conversation_id)
        if not approvals or signature not in approvals:
            return False
        if not approvals[signature]:
            del approvals[signature]
            if not approvals:
                self._approvals.pop(conversation_id, None)
            log_event(
                logger,
                "permission.approval.consumed",
                level=logging.DEBUG,
                conversation_id=conversation_id,
                signature=signature,
            )
        return True

    def clear_conversation(self, conversation_id: str) -> None:
        self._approvals.pop(conversation_id, None)

    def clear_all(self) -> None:
        self._approvals.clear()

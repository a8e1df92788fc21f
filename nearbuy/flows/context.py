# nearbuy/flows/context.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from nearbuy.domain.models import UserRecord
from nearbuy.domain.services.contracts import MessageSender
from nearbuy.domain.session import ConversationSession


@dataclass
class FlowContext:
    """Everything a step handler may touch for one inbound message."""

    session: ConversationSession
    user: Optional[UserRecord]
    send: MessageSender

    @property
    def phone(self) -> str:
        return self.session.phone

    @property
    def temp(self) -> dict:
        return self.session.temp_data

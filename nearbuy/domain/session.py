# nearbuy/domain/session.py
from __future__ import annotations

import time
from typing import Any, Optional

from pydantic import BaseModel, Field

from nearbuy.domain.flow_types import FlowType

SESSION_VERSION = 2


class ConversationSession(BaseModel):
    """Durable per-phone conversation state.

    ``current_flow`` is kept as a bare string so a tag written by an older
    deploy still loads; ``flow`` resolves it to a ``FlowType`` or None.
    ``current_step`` is ``None`` while idle on the main menu.  ``seeded`` is
    set when another user's action placed the session and cleared by the
    phone's own next message.
    """

    phone: str
    current_flow: str = FlowType.MAIN_MENU.value
    current_step: Optional[str] = None
    temp_data: dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[int] = None
    seeded: bool = False
    version: int = SESSION_VERSION
    last_active_ts: float = Field(default_factory=time.time)
    created_at: float = Field(default_factory=time.time)

    @property
    def flow(self) -> Optional[FlowType]:
        return FlowType.parse(self.current_flow)

    @property
    def is_idle(self) -> bool:
        return self.current_flow == FlowType.MAIN_MENU.value

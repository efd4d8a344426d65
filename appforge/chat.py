# appforge/chat.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

from .llm_client import ModelClient
from .models import AppPlan
from .prompts import chat_system_instruction

logger = logging.getLogger(__name__)

ERROR_PREFIX = "Sorry, I encountered an error: "


@dataclass
class ChatTurn:
    role: str  # "user" | "model"
    text: str


class ProjectChat:
    """Conversational assistant scoped to one project's plan."""

    def __init__(self, client: ModelClient, plan: AppPlan) -> None:
        self.client = client
        self.plan = plan
        self.history: List[ChatTurn] = []

    @property
    def system_instruction(self) -> str:
        return chat_system_instruction(self.plan)

    def _messages(self) -> List[Dict[str, str]]:
        return [
            {"role": "assistant" if t.role == "model" else "user", "content": t.text}
            for t in self.history
            if t.text
        ]

    def reset(self, plan: Optional[AppPlan] = None) -> None:
        if plan is not None:
            self.plan = plan
        self.history = []

    def send(self, message: str) -> Iterator[str]:
        """Stream the answer to ``message``; the model turn grows as chunks arrive."""
        text = (message or "").strip()
        if not text:
            return
        self.history.append(ChatTurn(role="user", text=text))
        messages = self._messages()
        answer = ChatTurn(role="model", text="")
        self.history.append(answer)
        try:
            for chunk in self.client.stream_text(messages, stage="CHAT", instructions=self.system_instruction):
                answer.text += chunk
                yield chunk
        except Exception as e:
            logger.error("chat failed", extra={"meta": {"app": self.plan.app_name, "err": str(e)}})
            answer.text = f"{ERROR_PREFIX}{e}"
            raise


__all__ = ["ChatTurn", "ERROR_PREFIX", "ProjectChat"]

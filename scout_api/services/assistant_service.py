from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import AzureChatOpenAI, ChatOpenAI

from scout_api.core.config import Settings
from scout_api.db.schemas import ChatMessageOut, Transaction
from scout_api.services import metrics

logger = logging.getLogger(__name__)

GREETING = (
    "Hello! I'm Scout AI, your Philippine retail intelligence assistant. I can analyze your "
    "transactions and provide insights about brands, consumer behavior, and market "
    "opportunities. What would you like to explore?"
)
APOLOGY = (
    "I apologize, but I encountered an error while analyzing the data. "
    "Please try again or rephrase your question."
)
SYSTEM_PROMPT = (
    "You are Scout AI, a Philippine retail intelligence assistant specializing in data analysis "
    "and market insights.\n\nContext: {context}\n\n"
    "Provide specific, actionable insights with numbers and percentages when possible. "
    "Use Philippine peso ({currency}) for currency. Reference specific data points from the "
    "context when possible. Keep responses concise but informative (2-3 paragraphs max)."
)
QUICK_INSIGHTS = [
    {"title": "Top Brand Performance", "query": "Which brands are performing best in terms of revenue and why?"},
    {"title": "Consumer Behavior Trends", "query": "What are the key consumer behavior patterns in our data?"},
    {"title": "Regional Opportunities", "query": "Which regions show the most growth potential?"},
    {"title": "Payment Mix", "query": "How is the split between cash and digital payments changing?"},
]


@dataclass
class ChatTurn:
    role: str
    content: str
    id: str = field(default_factory=lambda: uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def out(self) -> ChatMessageOut:
        return ChatMessageOut(id=self.id, role=self.role, content=self.content, timestamp=self.timestamp)


def build_llm(settings: Settings) -> Any | None:
    if settings.azure_openai_endpoint and settings.azure_openai_api_key:
        return AzureChatOpenAI(
            azure_endpoint=settings.azure_openai_endpoint,
            azure_deployment=settings.azure_openai_deployment,
            api_version=settings.azure_openai_api_version,
            api_key=settings.azure_openai_api_key,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )
    if settings.openai_api_key:
        return ChatOpenAI(
            model=settings.openai_model,
            api_key=settings.openai_api_key,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )
    return None


def build_context_digest(transactions: Sequence[Transaction], currency: str = "₱") -> str:
    if not transactions:
        return ""
    kpis = metrics.kpi_summary(transactions)
    regions = [str(b.key) for b in metrics.by_region(transactions) if b.key != metrics.UNKNOWN][:5]
    brands = [str(b.key) for b in metrics.by_brand(transactions) if b.key != metrics.UNKNOWN][:5]
    categories = [str(b.key) for b in metrics.by_category(transactions) if b.key != metrics.UNKNOWN][:5]
    busiest = max(metrics.by_hour(transactions), key=lambda b: b.count)
    parts = [
        f"Current dataset: {kpis.total_transactions:,} transactions, {currency}{kpis.total_revenue:,.2f} revenue, "
        f"{kpis.unique_customers:,} unique customers, average transaction {currency}{kpis.average_transaction_value:,.2f}."
    ]
    if regions:
        parts.append(f"Top regions: {', '.join(regions)}.")
    if brands:
        parts.append(f"Top brands: {', '.join(brands)}.")
    if categories:
        parts.append(f"Categories: {', '.join(categories)}.")
    if busiest.count:
        parts.append(f"Busiest hour: {busiest.key}:00 with {busiest.count:,} transactions.")
    return " ".join(parts)


class AssistantService:
    """Chat sessions proxied to a hosted completion model.

    Every reply is the model's text verbatim. Failures never reach the caller:
    they are logged and the transcript gets the fixed apology instead.
    """

    def __init__(self, settings: Settings, llm: Any | None = None):
        self.settings = settings
        self.llm = llm if llm is not None else build_llm(settings)
        self._sessions: dict[str, list[ChatTurn]] = {}
        self._lock = threading.Lock()

    def _store(self, session_id: str, transcript: list[ChatTurn]) -> None:
        # caller holds the lock; dict order doubles as least-recently-used order
        self._sessions.pop(session_id, None)
        while len(self._sessions) >= max(1, self.settings.chat_max_sessions):
            evicted = next(iter(self._sessions))
            del self._sessions[evicted]
            logger.info("Evicted idle chat session %s", evicted)
        self._sessions[session_id] = transcript

    def _session(self, session_id: str) -> list[ChatTurn]:
        with self._lock:
            transcript = self._sessions.get(session_id) or [ChatTurn("assistant", GREETING)]
            self._store(session_id, transcript)
            return transcript

    def build_messages(self, history: Sequence[ChatTurn], question: str, context: str) -> list[BaseMessage]:
        system = SYSTEM_PROMPT.format(context=context or "No dataset loaded.", currency=self.settings.display.currency_symbol)
        out: list[BaseMessage] = [SystemMessage(content=system)]
        for turn in history:
            out.append(HumanMessage(content=turn.content) if turn.role == "user" else AIMessage(content=turn.content))
        out.append(HumanMessage(content=question))
        return out

    def ask(self, question: str, session_id: str | None = None, context: str = "") -> tuple[str, ChatTurn, bool]:
        sid = session_id or uuid4().hex
        transcript = self._session(sid)
        prompt = self.build_messages(list(transcript), question, context)
        transcript.append(ChatTurn("user", question))

        failed = False
        try:
            if self.llm is None:
                raise RuntimeError("No chat model configured")
            reply = self.llm.invoke(prompt)
            text = reply.content if isinstance(reply.content, str) else str(reply.content)
        except Exception:
            logger.exception("Assistant request failed for session %s", sid)
            text = APOLOGY
            failed = True

        turn = ChatTurn("assistant", text)
        transcript.append(turn)
        return sid, turn, failed

    def messages(self, session_id: str) -> list[ChatTurn] | None:
        with self._lock:
            transcript = self._sessions.get(session_id)
            return list(transcript) if transcript is not None else None

    def sessions(self) -> list[dict[str, Any]]:
        with self._lock:
            items = list(self._sessions.items())
        out = []
        for sid, turns in items:
            first_user = next((t.content for t in turns if t.role == "user"), "")
            out.append({"session_id": sid, "last_at": turns[-1].timestamp, "preview": first_user[:80], "messages": len(turns)})
        return sorted(out, key=lambda s: s["last_at"], reverse=True)

    def reset(self, session_id: str) -> list[ChatTurn]:
        with self._lock:
            transcript = [ChatTurn("assistant", GREETING)]
            self._store(session_id, transcript)
            return list(transcript)

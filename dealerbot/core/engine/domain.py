# dealerbot/core/engine/domain.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# GRAPH NODES
# ============================================================================

class NodeId(str, Enum):
    """Conversation graph nodes. ``HANDOFF`` is terminal."""
    GREETING = "greeting"
    DISCOVERY = "discovery"
    SEARCH = "search"
    RECOMMENDATION = "recommendation"
    FOLLOW_UP = "follow_up"
    HANDOFF = "handoff"


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


# ============================================================================
# MESSAGES / QUIZ / GRAPH
# ============================================================================

@dataclass
class ChatMessage:
    role: str  # "user" | "assistant"
    content: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class QuizState:
    """Discovery progress. ``current_step``/``progress`` only grow until reset."""
    current_step: int = 0
    progress: int = 0
    answers: Dict[str, Any] = field(default_factory=dict)
    is_complete: bool = False


@dataclass
class GraphState:
    current_node: NodeId = NodeId.GREETING
    previous_node: Optional[NodeId] = None
    node_history: list[NodeId] = field(default_factory=list)
    error_count: int = 0
    loop_count: int = 0


# ============================================================================
# WRITE-ONCE FLAGS
# ============================================================================

class FlagSet:
    """Set of write-once markers.

    There is no remove/discard/clear: once a flag is set it stays set for
    the lifetime of the conversation.
    """

    __slots__ = ("_flags",)

    def __init__(self, flags=None):
        self._flags: set[str] = set(flags or ())

    def add(self, flag: str) -> bool:
        """Set *flag*. Returns True only if it was not set before."""
        if flag in self._flags:
            return False
        self._flags.add(flag)
        return True

    def __contains__(self, flag: object) -> bool:
        return flag in self._flags

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._flags))

    def __len__(self) -> int:
        return len(self._flags)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, FlagSet):
            return self._flags == other._flags
        if isinstance(other, (set, frozenset)):
            return self._flags == other
        return NotImplemented

    def __repr__(self) -> str:
        return f"FlagSet({sorted(self._flags)!r})"


FLAG_LEAD_CAPTURED = "lead_captured"
FLAG_HANDOFF_REQUESTED = "handoff_requested"
FLAG_VISIT_REQUESTED = "visit_requested"


@dataclass
class ConversationMetadata:
    started_at: datetime = field(default_factory=utcnow)
    last_message_at: datetime = field(default_factory=utcnow)
    flags: FlagSet = field(default_factory=FlagSet)

    def has_flag(self, flag: str) -> bool:
        return flag in self.flags

    def set_flag(self, flag: str) -> bool:
        return self.flags.add(flag)


# ============================================================================
# PROFILE / CATALOG
# ============================================================================

@dataclass
class CustomerProfile:
    """Structured preferences built from discovery answers + extraction."""
    customer_name: Optional[str] = None
    budget: Optional[int] = None
    budget_min: Optional[int] = None
    budget_max: Optional[int] = None
    budget_flexibility: int = 20  # percent
    usage_pattern: Optional[str] = None  # cidade | viagem | trabalho | familia | misto
    vehicle_type: Optional[str] = None  # hatch | sedan | suv | pickup | qualquer
    family_size: Optional[int] = None
    min_year: Optional[int] = None
    max_km: Optional[int] = None
    transmission: Optional[str] = None  # automatico | manual
    brand_preference: Optional[str] = None
    priorities: list[str] = field(default_factory=list)
    deal_breakers: list[str] = field(default_factory=list)


@dataclass
class Vehicle:
    id: str
    brand: str
    model: str
    year: int
    price: float
    mileage: int = 0
    version: Optional[str] = None
    body_type: Optional[str] = None
    fuel_type: Optional[str] = None
    transmission: Optional[str] = None
    color: Optional[str] = None
    url: Optional[str] = None
    description: Optional[str] = None

    @property
    def title(self) -> str:
        name = f"{self.brand} {self.model}"
        return f"{name} {self.version}" if self.version else name


@dataclass
class Recommendation:
    vehicle: Vehicle
    match_score: int = 0
    reasoning: str = ""
    highlights: list[str] = field(default_factory=list)


@dataclass
class SearchCriteria:
    budget: int
    budget_max: Optional[int] = None
    body_type: Optional[str] = None
    min_year: Optional[int] = None
    max_km: Optional[int] = None
    usage: Optional[str] = None
    persons: Optional[int] = None
    transmission: Optional[str] = None
    brand: Optional[str] = None
    limit: int = 5


# ============================================================================
# CONVERSATION STATE
# ============================================================================

def new_conversation_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class ConversationState:
    identity: str
    conversation_id: str = field(default_factory=new_conversation_id)
    status: ConversationStatus = ConversationStatus.ACTIVE
    language: str = "pt"
    messages: list[ChatMessage] = field(default_factory=list)
    quiz: QuizState = field(default_factory=QuizState)
    profile: Optional[CustomerProfile] = None
    recommendations: list[Recommendation] = field(default_factory=list)
    graph: GraphState = field(default_factory=GraphState)
    metadata: ConversationMetadata = field(default_factory=ConversationMetadata)

    @property
    def is_closed(self) -> bool:
        return self.status == ConversationStatus.CLOSED

    def add_message(self, role: str, content: str) -> ChatMessage:
        message = ChatMessage(role=role, content=content)
        self.messages.append(message)
        return message


# ============================================================================
# ENGINE OUTPUT
# ============================================================================

class MutationKind(str, Enum):
    CONVERSATION_STARTED = "conversation_started"
    CONVERSATION_CLOSED = "conversation_closed"
    CONVERSATION_RESET = "conversation_reset"
    PROFILE_UPDATED = "profile_updated"
    RECOMMENDATIONS_REPLACED = "recommendations_replaced"
    LEAD_CAPTURED = "lead_captured"
    HANDOFF = "handoff"
    DATA_EXPORTED = "data_exported"
    DATA_DELETED = "data_deleted"


@dataclass
class StateMutation:
    """Instruction for the caller describing what changed this turn."""
    kind: MutationKind
    detail: Dict[str, Any] = field(default_factory=dict)


@dataclass
class HandleResult:
    response_text: str
    mutations: list[StateMutation] = field(default_factory=list)
    node: Optional[NodeId] = None
    conversation_id: Optional[str] = None

    def has_mutation(self, kind: MutationKind) -> bool:
        return any(m.kind == kind for m in self.mutations)


# ============================================================================
# SERIALIZATION (state_json)
# ============================================================================

def _dt(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def state_to_dict(state: ConversationState) -> dict:
    """JSON-safe dict of *state* (enums and datetimes as strings)."""
    return {
        "identity": state.identity,
        "conversation_id": state.conversation_id,
        "status": state.status.value,
        "language": state.language,
        "messages": [
            {"role": m.role, "content": m.content, "timestamp": m.timestamp.isoformat()}
            for m in state.messages
        ],
        "quiz": asdict(state.quiz),
        "profile": asdict(state.profile) if state.profile else None,
        "recommendations": [asdict(r) for r in state.recommendations],
        "graph": {
            "current_node": state.graph.current_node.value,
            "previous_node": state.graph.previous_node.value if state.graph.previous_node else None,
            "node_history": [n.value for n in state.graph.node_history],
            "error_count": state.graph.error_count,
            "loop_count": state.graph.loop_count,
        },
        "metadata": {
            "started_at": state.metadata.started_at.isoformat(),
            "last_message_at": state.metadata.last_message_at.isoformat(),
            "flags": list(state.metadata.flags),
        },
    }


def state_from_dict(data: dict) -> ConversationState:
    graph = data.get("graph") or {}
    metadata = data.get("metadata") or {}
    profile = data.get("profile")
    previous = graph.get("previous_node")
    return ConversationState(
        identity=data["identity"],
        conversation_id=data["conversation_id"],
        status=ConversationStatus(data.get("status", "active")),
        language=data.get("language", "pt"),
        messages=[
            ChatMessage(role=m["role"], content=m["content"], timestamp=_dt(m["timestamp"]))
            for m in data.get("messages", [])
        ],
        quiz=QuizState(**(data.get("quiz") or {})),
        profile=CustomerProfile(**profile) if profile else None,
        recommendations=[
            Recommendation(
                vehicle=Vehicle(**r["vehicle"]),
                match_score=r.get("match_score", 0),
                reasoning=r.get("reasoning", ""),
                highlights=r.get("highlights", []),
            )
            for r in data.get("recommendations", [])
        ],
        graph=GraphState(
            current_node=NodeId(graph.get("current_node", NodeId.GREETING.value)),
            previous_node=NodeId(previous) if previous else None,
            node_history=[NodeId(n) for n in graph.get("node_history", [])],
            error_count=graph.get("error_count", 0),
            loop_count=graph.get("loop_count", 0),
        ),
        metadata=ConversationMetadata(
            started_at=_dt(metadata["started_at"]) if "started_at" in metadata else utcnow(),
            last_message_at=_dt(metadata["last_message_at"]) if "last_message_at" in metadata else utcnow(),
            flags=FlagSet(metadata.get("flags", [])),
        ),
    )

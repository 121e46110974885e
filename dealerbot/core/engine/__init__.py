# dealerbot/core/engine/__init__.py
"""
Core engine -- conversation state, collaborator protocols, the node graph
and the ``handle(identity, message)`` use case.

Canonical imports:
    from dealerbot.core.engine import ConversationEngine
    from dealerbot.core.engine.domain import ConversationState, NodeId
    from dealerbot.core.engine.ports import ConversationStore
"""
from dealerbot.core.engine.domain import (  # noqa: F401
    ConversationState,
    CustomerProfile,
    FlagSet,
    HandleResult,
    MutationKind,
    NodeId,
    Recommendation,
    SearchCriteria,
    StateMutation,
    Vehicle,
)
from dealerbot.core.engine.ports import (  # noqa: F401
    ConversationStore,
    SearchProvider,
    LeadChannel,
    PrivacyService,
)
from dealerbot.core.engine.graph import ConversationGraph, NodeContext, NodeResult  # noqa: F401
from dealerbot.core.engine.commands import CommandKind, PendingConfirmations, detect_command  # noqa: F401
from dealerbot.core.engine.use_cases import ConversationEngine  # noqa: F401

"""Projection engine for ACP session update streams."""

from acprelay.projection.budget import BudgetTracker
from acprelay.projection.config import (
    ConfigResolver,
    ProjectionConfig,
    StaticConfigResolver,
    load_config_from_env,
)
from acprelay.projection.dedup import DedupMemory, DeliveryHandle, ToolCallRecord, ToolLifecycle
from acprelay.projection.events import ClassifiedEvent, EventCategory, classify
from acprelay.projection.hub import ABORT_TRIGGERS, ProjectionHub, is_abort_trigger
from acprelay.projection.interfaces import (
    CancelOperation,
    ChunkCoalescer,
    NullRawEventLog,
    NullTypingSignaler,
    RawEventLog,
    Sender,
    TurnCollaborators,
    TypingSignaler,
)
from acprelay.projection.policy import Decision, Emit, EmitTruncationNotice, Suppress, commit, evaluate
from acprelay.projection.scheduler import DeliveryScheduler
from acprelay.projection.tools import DeliveryOutcome, DeliveryResult, ToolLifecycleDeliverer
from acprelay.projection.turn import ABORT_REASON, TurnController, TurnPhase, TurnState

__all__ = [
    "ABORT_REASON",
    "ABORT_TRIGGERS",
    "BudgetTracker",
    "CancelOperation",
    "ChunkCoalescer",
    "ClassifiedEvent",
    "ConfigResolver",
    "Decision",
    "DedupMemory",
    "DeliveryHandle",
    "DeliveryOutcome",
    "DeliveryResult",
    "DeliveryScheduler",
    "Emit",
    "EmitTruncationNotice",
    "EventCategory",
    "NullRawEventLog",
    "NullTypingSignaler",
    "ProjectionConfig",
    "ProjectionHub",
    "RawEventLog",
    "Sender",
    "StaticConfigResolver",
    "Suppress",
    "ToolCallRecord",
    "ToolLifecycle",
    "ToolLifecycleDeliverer",
    "TurnCollaborators",
    "TurnController",
    "TurnPhase",
    "TurnState",
    "TypingSignaler",
    "classify",
    "commit",
    "evaluate",
    "is_abort_trigger",
    "load_config_from_env",
]

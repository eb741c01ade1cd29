"""Bounded, routed tool-calling loop for LLM agents."""

from .admin_config import (
    AdminOverridesProvider,
    CachedAdminOverridesProvider,
    FileAdminOverridesProvider,
    StaticAdminOverrides,
)
from .client import AIClient, ClientSettings
from .core import CallOptions, CompactionSettings
from .errors import (
    AgentLoopError,
    ConfigurationError,
    InvalidCallOptionsError,
    ModelInvocationError,
    ToolNotFoundError,
)

# Loop driver
from .loop import (
    AdminLoopConfig,
    CancellationToken,
    ChatLoopConfig,
    LoopConfig,
    LoopDriver,
    ModelInvoker,
    run_loop,
)
from .router import Classifier, route_question
from .settings import LoopSettings, SettingsStore
from .telemetry import UsageRecorder
from .tools import ToolRegistry, ToolSpec
from .types import (
    AdminOverrides,
    ComplexityTier,
    LoopResult,
    Message,
    RouterDecision,
    Step,
    TextPart,
    ThreadContext,
    ToolCallPart,
    ToolResultPart,
    Usage,
)

__all__ = [
    "AIClient",
    "AdminLoopConfig",
    "AdminOverrides",
    "AdminOverridesProvider",
    "AgentLoopError",
    "CachedAdminOverridesProvider",
    "CallOptions",
    "CancellationToken",
    "ChatLoopConfig",
    "Classifier",
    "ClientSettings",
    "CompactionSettings",
    "ComplexityTier",
    "ConfigurationError",
    "FileAdminOverridesProvider",
    "InvalidCallOptionsError",
    "LoopConfig",
    "LoopDriver",
    "LoopResult",
    "LoopSettings",
    "Message",
    "ModelInvocationError",
    "ModelInvoker",
    "RouterDecision",
    "SettingsStore",
    "StaticAdminOverrides",
    "Step",
    "TextPart",
    "ThreadContext",
    "ToolCallPart",
    "ToolNotFoundError",
    "ToolRegistry",
    "ToolResultPart",
    "ToolSpec",
    "Usage",
    "UsageRecorder",
    "route_question",
    "run_loop",
]

# relaybot/core/engine/__init__.py
"""
Core engine -- platform-agnostic dispatch, middleware and scenes.

This package contains the event/session domain model, abstract protocols
(ports), pattern matching, handler registries, the middleware pipeline,
the scene state machine and the Dispatcher that ties them together.

Canonical imports:
    from relaybot.core.engine import Dispatcher, Scene, StepOutcome
    from relaybot.core.engine.domain import InboundEvent, Session
    from relaybot.core.engine.ports import AsyncSessionStore, Transport
"""
from relaybot.core.engine.domain import (  # noqa: F401
    EventKind,
    InboundEvent,
    OutboundMessage,
    Attachment,
    MatchOutcome,
    Session,
    Idle,
    InScene,
    IDLE,
)
from relaybot.core.engine.ports import (  # noqa: F401
    AsyncSessionStore,
    Transport,
    EventSource,
)
from relaybot.core.engine.patterns import (  # noqa: F401
    Exact,
    Regex,
    AnyOf,
    compile_pattern,
    matches,
)
from relaybot.core.engine.errors import (  # noqa: F401
    RelayBotError,
    SceneNotFoundError,
    DuplicateSceneError,
    TransportNotConfiguredError,
)
from relaybot.core.engine.context import Context  # noqa: F401
from relaybot.core.engine.registry import HandlerRegistry, ListenerRegistry  # noqa: F401
from relaybot.core.engine.middleware import (  # noqa: F401
    MiddlewarePipeline,
    continuation,
    logging_middleware,
)
from relaybot.core.engine.scenes import Scene, SceneManager, StepOutcome  # noqa: F401
from relaybot.core.engine.dispatcher import Dispatcher  # noqa: F401

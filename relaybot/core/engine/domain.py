from __future__ import annotations

from collections.abc import Iterator, Mapping, MutableMapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union


# ============================================================================
# EVENT CLASSES
# ============================================================================

class EventKind(str, Enum):
    """Normalized inbound event classes, independent of the chat platform"""
    MESSAGE = "message"
    ACTION = "action"  # button / interactive component activation
    NEW_MEMBER = "new_member"
    REMOVE_MEMBER = "remove_member"
    MESSAGE_REACTION_ADD = "message_reaction_add"
    MESSAGE_REACTION_REMOVE = "message_reaction_remove"


LIFECYCLE_KINDS = frozenset({
    EventKind.NEW_MEMBER,
    EventKind.REMOVE_MEMBER,
    EventKind.MESSAGE_REACTION_ADD,
    EventKind.MESSAGE_REACTION_REMOVE,
})

COMMAND_PREFIXES = ("/", "!")


class MatchOutcome(str, Enum):
    """Result of a routing stage: keep going, or the event has been consumed"""
    CONTINUE = "continue"
    STOP = "stop"


@dataclass
class InboundEvent:
    """
    Normalized inbound event from any transport.
    ``raw`` is the platform payload; the engine never looks inside it.
    """
    kind: EventKind
    sender_id: str
    chat_id: Optional[str] = None  # reply target, defaults to the sender
    text: Optional[str] = None
    payload: Optional[str] = None  # action identifier (button custom id / callback data)
    message_id: Optional[str] = None
    interaction_id: Optional[str] = None  # handle used to acknowledge an action
    provider: str = "dev"
    raw: Any = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.kind = EventKind(self.kind)
        if self.chat_id is None:
            self.chat_id = self.sender_id

    def has_text(self) -> bool:
        return bool(self.text)

    def is_command(self) -> bool:
        """A text event is a command iff its raw first character is / or !"""
        return bool(self.text) and self.text[0] in COMMAND_PREFIXES


# ============================================================================
# OUTBOUND CONTENT
# ============================================================================

@dataclass
class Attachment:
    """
    File sent along with a message.

    ``source`` is a URL / platform file id (str), raw bytes, or a local Path.
    """
    source: Union[str, bytes, Path]
    filename: str = "file"
    kind: str = "document"  # "photo" | "document"
    description: Optional[str] = None


@dataclass
class OutboundMessage:
    """Transport-neutral outbound message"""
    text: str = ""
    attachments: list[Attachment] = field(default_factory=list)
    # Interactive component descriptors, passed to the transport untouched
    components: Optional[list[Any]] = None

    @classmethod
    def coerce(cls, value: Any) -> "OutboundMessage":
        if isinstance(value, OutboundMessage):
            return cls(
                text=value.text,
                attachments=list(value.attachments),
                components=list(value.components) if value.components else None,
            )
        if isinstance(value, str):
            return cls(text=value)
        if isinstance(value, Mapping) and ("text" in value or "content" in value):
            return cls(
                text=str(value.get("text", value.get("content")) or ""),
                attachments=list(value.get("attachments") or []),
                components=value.get("components"),
            )
        return cls(text=str(value))


# ============================================================================
# SESSION STATE
# ============================================================================

SCENE_KEY = "__scene"
STEP_KEY = "step"
RESERVED_KEYS = frozenset({SCENE_KEY, STEP_KEY})


@dataclass(frozen=True)
class Idle:
    """No active scene"""


@dataclass(frozen=True)
class InScene:
    name: str
    step: int = 0


IDLE = Idle()
SceneState = Union[Idle, InScene]


class Session(MutableMapping):
    """
    Per-conversation state: free-form user data plus the scene state.

    The scene state is kept apart from user data and only merged into the
    reserved ``__scene`` / ``step`` keys when the session is serialized for
    the store, so the two keys always travel together.
    """

    def __init__(self, data: Optional[Mapping[str, Any]] = None, state: SceneState = IDLE):
        self._data: dict[str, Any] = {}
        self._state: SceneState = state
        for key, value in (data or {}).items():
            self[key] = value

    # -- mapping protocol ----------------------------------------------------

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        if key in RESERVED_KEYS:
            raise ValueError(f"{key!r} is a reserved session key")
        self._data[key] = value

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"Session(data={self._data!r}, state={self._state!r})"

    # -- scene state ---------------------------------------------------------

    @property
    def state(self) -> SceneState:
        return self._state

    @state.setter
    def state(self, value: SceneState) -> None:
        if not isinstance(value, (Idle, InScene)):
            raise TypeError(f"Invalid scene state: {value!r}")
        self._state = value

    @property
    def scene_name(self) -> Optional[str]:
        return self._state.name if isinstance(self._state, InScene) else None

    @property
    def step(self) -> Optional[int]:
        return self._state.step if isinstance(self._state, InScene) else None

    def in_scene(self) -> bool:
        return isinstance(self._state, InScene)

    def clear(self) -> None:
        """Full reset: user data and scene state"""
        self._data.clear()
        self._state = IDLE

    # -- store round-trip ----------------------------------------------------

    def to_mapping(self) -> dict[str, Any]:
        out = dict(self._data)
        if isinstance(self._state, InScene):
            out[SCENE_KEY] = self._state.name
            out[STEP_KEY] = self._state.step
        return out

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> "Session":
        raw = dict(mapping or {})
        scene = raw.pop(SCENE_KEY, None)
        step = raw.pop(STEP_KEY, None)

        state: SceneState = IDLE
        if isinstance(scene, str) and scene:
            # A scene without a usable step resumes from the first step
            if not isinstance(step, int) or isinstance(step, bool) or step < 0:
                step = 0
            state = InScene(scene, step)

        return cls(raw, state)

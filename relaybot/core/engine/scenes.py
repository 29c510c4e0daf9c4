# relaybot/core/engine/scenes.py
"""
Scenes: named, sequential multi-turn flows (registration wizards, forms).

Progress lives in the session as ``InScene(name, step)``; a Scene object
holds no per-user data and is shared by every conversation inside it.

Step contract:
    async def step(ctx) -> None | StepOutcome | bool

Returning ``StepOutcome.RETRY`` (or ``False``) keeps the current step, so it
runs again on the next event. Anything else advances, provided the event
carried text and the step did not move the scene itself (leave / jump /
enter another scene).
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence, TYPE_CHECKING, Union

from relaybot.core.engine.callbacks import invoke
from relaybot.core.engine.domain import InScene, MatchOutcome
from relaybot.core.engine.errors import DuplicateSceneError, SceneNotFoundError
from relaybot.infra.logging_config import get_logger

if TYPE_CHECKING:
    from relaybot.core.engine.context import Context

logger = get_logger(__name__)


class StepOutcome(str, Enum):
    ADVANCE = "advance"
    RETRY = "retry"


StepFn = Callable[["Context"], Union[Awaitable[Any], Any]]


def _is_retry(result: Any) -> bool:
    return result is False or result is StepOutcome.RETRY


class Scene:
    """Immutable scene definition"""

    __slots__ = ("_name", "_steps")

    def __init__(self, name: str, steps: Sequence[StepFn]):
        if not name:
            raise ValueError("Scene name must not be empty")
        self._name = name
        self._steps: tuple[StepFn, ...] = tuple(steps)

    @property
    def name(self) -> str:
        return self._name

    @property
    def steps(self) -> tuple[StepFn, ...]:
        return self._steps

    def __len__(self) -> int:
        return len(self._steps)

    def __repr__(self) -> str:
        return f"Scene(name={self._name!r}, steps={len(self._steps)})"

    async def enter(self, ctx: "Context") -> None:
        """Start the scene at step 0 and run that step in the current cycle"""
        ctx.session.state = InScene(self._name, 0)
        ctx.scene = self
        ctx.scene_stopped = False
        await self.handle(ctx)

    async def leave(self, ctx: "Context") -> None:
        """Drop every session key, including the scene state"""
        ctx.session.clear()
        ctx.scene = None
        ctx.scene_stopped = True

    def jump(self, ctx: "Context", step: int) -> None:
        """Move to ``step`` without running it; the next event runs it"""
        if step < 0:
            raise ValueError(f"Scene step must be >= 0, got {step}")
        ctx.session.state = InScene(self._name, step)

    async def handle(self, ctx: "Context") -> None:
        """Run the current step, or leave when every step has run"""
        before = ctx.session.state
        step = before.step if isinstance(before, InScene) else 0

        if step >= len(self._steps):
            await self.leave(ctx)
            ctx.handled = True
            return

        ctx.scene = self
        try:
            result = await invoke(self._steps[step], ctx)
        except Exception:
            # No partial advance: the same step re-runs on the next event
            ctx.session.state = before
            if isinstance(before, InScene):
                ctx.scene = self
            ctx.handled = True
            raise

        ctx.handled = True
        # Identity check: any leave/jump/enter replaces the state object
        if ctx.session.state is before and ctx.has_text and not _is_retry(result):
            ctx.session.state = InScene(self._name, step + 1)


class SceneManager:
    """Registry of scene definitions plus the routing intercept"""

    def __init__(self) -> None:
        self._scenes: dict[str, Scene] = {}

    def register(self, scene: Scene) -> Scene:
        if scene.name in self._scenes:
            raise DuplicateSceneError(scene.name)
        self._scenes[scene.name] = scene
        logger.debug("Registered scene: %s (%d steps)", scene.name, len(scene))
        return scene

    def get(self, name: str) -> Optional[Scene]:
        return self._scenes.get(name)

    def names(self) -> list[str]:
        return list(self._scenes.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._scenes

    def __len__(self) -> int:
        return len(self._scenes)

    async def enter(self, name: str, ctx: "Context") -> None:
        scene = self._scenes.get(name)
        if scene is None:
            raise SceneNotFoundError(name, self.names())
        await scene.enter(ctx)

    def active_scene(self, ctx: "Context") -> Optional[Scene]:
        state = ctx.session.state
        if not isinstance(state, InScene):
            return None
        return self._scenes.get(state.name)

    async def intercept(self, ctx: "Context") -> MatchOutcome:
        """
        Route the event into the active scene, if any.

        Returns STOP when a scene consumed the event. A step that calls
        ``leave`` hands the event on (CONTINUE) so the registries see it in
        the same cycle; running past the last step does not. Step errors
        propagate to the caller with the scene state already restored.
        """
        if ctx.scene_stopped:
            return MatchOutcome.CONTINUE

        state = ctx.session.state
        if not isinstance(state, InScene):
            return MatchOutcome.CONTINUE

        scene = self._scenes.get(state.name)
        if scene is None:
            logger.warning(
                "Session references unknown scene '%s', routing normally (sender=%s)",
                state.name, ctx.sender_id,
            )
            return MatchOutcome.CONTINUE

        exhausted = state.step >= len(scene)
        ctx.scene = scene
        await scene.handle(ctx)
        if ctx.scene_stopped and not exhausted and not isinstance(ctx.session.state, InScene):
            return MatchOutcome.CONTINUE
        return MatchOutcome.STOP

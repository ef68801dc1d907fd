"""
Build and run lifecycles, modelled as linear state machines.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple, Sequence


class BuildState(str, Enum):
    """
    States an image build passes through.
    """
    UNBUILT = "unbuilt"
    BASE_SELECTED = "base-selected"
    SOURCE_COPIED = "source-copied"
    DEPENDENCIES_INSTALLED = "dependencies-installed"
    COMPILED = "compiled"
    LAUNCH_CONFIGURED = "launch-configured"
    IMAGE_READY = "image-ready"
    BUILD_FAILED = "build-failed"


class RunState(str, Enum):
    """
    States a container passes through once its image is ready.
    """
    IMAGE_READY = "image-ready"
    CONTAINER_STARTED = "container-started"
    PROCESS_RUNNING = "process-running"
    PROCESS_EXITED = "process-exited"
    PROCESS_KILLED = "process-killed"


BUILD_ORDER = [
    BuildState.UNBUILT,
    BuildState.BASE_SELECTED,
    BuildState.SOURCE_COPIED,
    BuildState.DEPENDENCIES_INSTALLED,
    BuildState.COMPILED,
    BuildState.LAUNCH_CONFIGURED,
    BuildState.IMAGE_READY,
]

RUN_ORDER = [
    RunState.IMAGE_READY,
    RunState.CONTAINER_STARTED,
    RunState.PROCESS_RUNNING,
]

RUN_TERMINAL = (RunState.PROCESS_EXITED, RunState.PROCESS_KILLED)


class StateMachine:
    """
    A linear state machine. Each step may only move to the next state in
    ``order``. From any non-terminal state it may also jump to one of
    ``exits``. Terminal states accept no further transition.
    """
    def __init__(self,
                 order: Sequence[Enum],
                 exits: Sequence[Enum] = (),
                 terminal: Optional[Sequence[Enum]] = None):
        self.order = list(order)
        self.exits = list(exits)
        self.terminal = list(terminal) if terminal is not None else [self.order[-1]] + self.exits
        self.history: List[Tuple[Enum, str]] = []
        self._record(self.order[0])

    @classmethod
    def for_build(cls) -> "StateMachine":
        return cls(BUILD_ORDER, [BuildState.BUILD_FAILED])

    @classmethod
    def for_run(cls) -> "StateMachine":
        return cls(RUN_ORDER, RUN_TERMINAL, terminal=RUN_TERMINAL)

    @property
    def state(self) -> Enum:
        return self.history[-1][0]

    @property
    def is_terminal(self) -> bool:
        return self.state in self.terminal

    def advance(self, target: Enum) -> None:
        """
        Moves to ``target``.

        :raises RuntimeError: If ``target`` is not the next state.
        """
        if self.is_terminal:
            raise RuntimeError(f"Cannot leave terminal state {self.state.value}")
        if target in self.exits:
            self._record(target)
            return
        index = self.order.index(self.state)
        if index + 1 >= len(self.order) or self.order[index + 1] != target:
            raise RuntimeError(f"Illegal transition {self.state.value} -> {target.value}")
        self._record(target)

    def states(self) -> List[str]:
        return [state.value for state, _ in self.history]

    def _record(self, state: Enum) -> None:
        now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        self.history.append((state, now))

class RelayBotError(Exception):
    """Base error for the dispatch engine"""


class SceneNotFoundError(RelayBotError):
    def __init__(self, name: str, available: list[str]):
        self.name = name
        super().__init__(
            f"Unknown scene '{name}'. "
            f"Available scenes: {', '.join(available) if available else 'none'}"
        )


class DuplicateSceneError(RelayBotError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Scene '{name}' is already registered")


class TransportNotConfiguredError(RelayBotError):
    """Raised when a Context side effect needs a transport and none is attached"""

"""
String-keyed handler lookup shared by the webhook and job registries.

Registries are plain objects built at startup and passed into the gateway and
dispatcher, so tests can hand in their own. An unknown key is not an error:
get() returns None and the caller takes its "no handler" branch.
"""
import logging
from typing import Callable, Generic, Iterator, Optional, TypeVar

logger = logging.getLogger(__name__)

H = TypeVar("H", bound=Callable)


class HandlerRegistry(Generic[H]):
    kind = "handler"

    def __init__(self, handlers: Optional[dict[str, H]] = None):
        self._handlers: dict[str, H] = dict(handlers or {})

    def register(self, name: str, handler: Optional[H] = None):
        """
        Register a handler under `name`. Usable directly or as a decorator:

            registry.register("generate-report", generate_report)

            @registry.register("generate-report")
            async def generate_report(payload, context): ...
        """
        def _add(fn: H) -> H:
            if name in self._handlers:
                logger.warning("Replacing %s registered as '%s'", self.kind, name)
            self._handlers[name] = fn
            return fn

        if handler is not None:
            return _add(handler)
        return _add

    def get(self, name: str) -> Optional[H]:
        return self._handlers.get(name)

    def names(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        return len(self._handlers)

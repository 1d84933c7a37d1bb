from typing import Any, Generic, Protocol, TypeVar

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen in production mode"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def has(self, name: str) -> bool:
        """Check whether an implementation is registered under a name."""
        return name in self._implementations

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Job Registry - background processing handlers
class JobHandler(Protocol):
    """Protocol for job handlers that process background tasks."""

    async def handle(self, job: Any) -> Any:
        """
        Handle a background job.

        Args:
            job: The claimed Job, status already set to running

        Returns:
            Optional JSON-compatible result stored on the completed job.
            Raising marks the attempt as failed.
        """
        ...


class FunctionHandler:
    """Adapts a plain coroutine function to the JobHandler protocol."""

    def __init__(self, func):
        self.func = func

    async def handle(self, job: Any) -> Any:
        return await self.func(job)

    def __repr__(self) -> str:
        return f"FunctionHandler({getattr(self.func, '__name__', self.func)!r})"


class JobRegistry(Registry[JobHandler]):
    """Registry for background job handlers, one per job name."""

    def __init__(self):
        super().__init__("Job")

    def register(self, name: str, implementation: Any) -> None:
        if not hasattr(implementation, "handle"):
            if not callable(implementation):
                raise TypeError(f"Handler for '{name}' must be callable")
            implementation = FunctionHandler(implementation)
        super().register(name, implementation)

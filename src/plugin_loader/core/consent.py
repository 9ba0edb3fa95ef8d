"""Consent oracles deciding whether consent-gated plugins may load."""

from typing import Callable, Iterable, List, Protocol, Set

from ..base.loggable import Loggable


class ConsentOracle(Protocol):
    """Anything with ``check(required_states) -> bool``."""

    def check(self, required_states: List[str]) -> bool: ...


class AllowAllConsent:
    """Oracle that grants every request."""

    def check(self, required_states: List[str]) -> bool:
        return True


class CallableConsent:
    """Adapt a plain ``func(required_states) -> bool`` to `ConsentOracle`."""

    def __init__(self, func: Callable[[List[str]], bool]) -> None:
        self.func = func

    def check(self, required_states: List[str]) -> bool:
        return bool(self.func(required_states))


class ConsentStore(Loggable):
    """In-memory set of granted consent tags.

    ``check`` is True only when every required tag has been granted.
    """

    def __init__(self, granted: Iterable[str] = ()) -> None:
        super().__init__()
        self._granted: Set[str] = set(granted)

    @property
    def granted(self) -> List[str]:
        return sorted(self._granted)

    def grant(self, *states: str) -> None:
        self._granted.update(states)
        self.logger.info(f"Consent granted: {', '.join(states)}")

    def revoke(self, *states: str) -> None:
        self._granted.difference_update(states)
        self.logger.info(f"Consent revoked: {', '.join(states)}")

    def check(self, required_states: List[str]) -> bool:
        return all(state in self._granted for state in required_states)

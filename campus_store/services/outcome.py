"""Primary results plus the advisory side effects that followed them.

The durable part of an operation (order row, stock, ledger entries) is
returned as ``Outcome.result``. Notifications, emails and event broadcasts
run afterwards through :func:`run_effect`; their failures are logged and
recorded in ``Outcome.effects`` but never change ``result``.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class EffectResult:
    name: str
    ok: bool
    error: str | None = None

    def to_dict(self) -> dict:
        return {"name": self.name, "ok": self.ok, "error": self.error}


@dataclass
class Outcome(Generic[T]):
    result: T
    effects: list[EffectResult] = field(default_factory=list)

    @property
    def failed_effects(self) -> list[EffectResult]:
        return [e for e in self.effects if not e.ok]

    def run(self, name: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        return run_effect(self.effects, name, fn, *args, **kwargs)


def run_effect(effects: list[EffectResult], name: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
    """Run a best-effort side effect, recording success or the error."""
    try:
        value = fn(*args, **kwargs)
    except Exception as e:
        logger.exception("Side effect %s failed: %s", name, e)
        effects.append(EffectResult(name=name, ok=False, error=str(e)))
        return None
    effects.append(EffectResult(name=name, ok=True))
    return value

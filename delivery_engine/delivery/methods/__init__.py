"""
Delivery-method strategies.

Each delivery method (flashcard, multiple choice, fill blank, ...) has its own
module with a strategy class exposing build_step(question, data, lesson_id).
Strategies register themselves with the default registry through @register,
so adding a method never touches plan composition code.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from delivery_engine.core.errors import DuplicateStrategyError, UnknownDeliveryMethodError
from delivery_engine.core.models import DeliveryMethod

if TYPE_CHECKING:
    from .base import DeliveryMethodStrategy


class DeliveryMethodRegistry:
    """Maps DeliveryMethod -> strategy instance."""

    def __init__(self) -> None:
        self._strategies: dict[DeliveryMethod, DeliveryMethodStrategy] = {}

    def add(self, strategy: DeliveryMethodStrategy) -> None:
        if strategy.method in self._strategies:
            raise DuplicateStrategyError(f"Strategy already registered for {strategy.method.value}")
        self._strategies[strategy.method] = strategy

    def has(self, method: DeliveryMethod) -> bool:
        return method in self._strategies

    def get(self, method: DeliveryMethod | str) -> DeliveryMethodStrategy:
        """Strategy for a method. Raises UnknownDeliveryMethodError if none is registered."""
        if isinstance(method, str) and not isinstance(method, DeliveryMethod):
            try:
                method = DeliveryMethod(method.lower())
            except ValueError:
                raise UnknownDeliveryMethodError(method) from None
        try:
            return self._strategies[method]
        except KeyError:
            raise UnknownDeliveryMethodError(method.value) from None

    def methods(self) -> list[DeliveryMethod]:
        return list(self._strategies)

    def __len__(self) -> int:
        return len(self._strategies)


# Default registry - populated by @register decorator
STRATEGIES = DeliveryMethodRegistry()


def register(cls):
    """Decorator to register a strategy class with the default registry."""
    STRATEGIES.add(cls())
    return cls


def get_strategy(method: DeliveryMethod | str) -> DeliveryMethodStrategy:
    return STRATEGIES.get(method)


# Import strategies to trigger registration
from . import fill_blank  # noqa: E402
from . import flashcard  # noqa: E402
from . import multiple_choice  # noqa: E402
from . import speech  # noqa: E402
from . import text_translation  # noqa: E402

__all__ = [
    "DeliveryMethodRegistry",
    "STRATEGIES",
    "get_strategy",
    "register",
]

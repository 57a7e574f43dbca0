"""Access policies for injected fields and relocated methods.

Python has no access modifiers, so the policies map onto naming and typing
conventions: private members carry a leading underscore and final fields are
annotated with ``typing.Final``.
"""

from __future__ import annotations

from enum import Enum

from .errors import InvalidVisibilityError


def is_dunder(name: str) -> bool:
    return len(name) > 4 and name.startswith("__") and name.endswith("__")


class Visibility(Enum):
    """The closed set of access policies offered for field injection."""

    PRIVATE_FINAL = "private final"
    PRIVATE = "private"
    PUBLIC_FINAL = "public final"
    PUBLIC = "public"

    @classmethod
    def parse(cls, text: str) -> "Visibility":
        """Parse ``"private final"``, ``"PRIVATE_FINAL"``, ``"public"`` and so on."""
        key = " ".join(text.replace("_", " ").lower().split())
        for member in cls:
            if member.value == key:
                return member
        choices = ", ".join(repr(m.value) for m in cls)
        raise InvalidVisibilityError(
            f"unknown visibility {text!r} (expected one of {choices})"
        )

    @classmethod
    def of_name(cls, name: str) -> "Visibility":
        """Return the visibility a member name currently expresses."""
        if name.startswith("_") and not is_dunder(name):
            return cls.PRIVATE
        return cls.PUBLIC

    @property
    def is_private(self) -> bool:
        return self in (Visibility.PRIVATE, Visibility.PRIVATE_FINAL)

    @property
    def is_final(self) -> bool:
        return self in (Visibility.PRIVATE_FINAL, Visibility.PUBLIC_FINAL)

    @property
    def rank(self) -> int:
        """0 for private policies, 1 for public ones."""
        return 0 if self.is_private else 1

    def __lt__(self, other: "Visibility") -> bool:
        if not isinstance(other, Visibility):
            return NotImplemented
        return self.rank < other.rank

    def widen(self, other: "Visibility") -> "Visibility":
        """Return whichever of the two grants wider access (self on a tie)."""
        return other if self < other else self

    def narrow(self, other: "Visibility") -> "Visibility":
        """Return whichever of the two grants narrower access (self on a tie)."""
        return other if other < self else self

    def apply_to_name(self, name: str) -> str:
        """Rename *name* so that it expresses this visibility.

        Dunder names are protocol hooks and are never renamed.
        """
        if is_dunder(name):
            return name
        if self.is_private:
            return name if name.startswith("_") else f"_{name}"
        stripped = name.lstrip("_")
        return stripped or name

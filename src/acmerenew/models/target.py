"""Certificate target: the subjects a renewal requests a certificate for."""

from __future__ import annotations

from dataclasses import dataclass

from acmerenew.core.errors import ConfigurationError
from acmerenew.core.identifiers import MAX_COMMON_NAME, Identifier


@dataclass(frozen=True)
class TargetPart:
    """One independently scoped binding group (e.g. one web site).

    Attributes
    ----------
    identifiers:
        Non-empty tuple of identifiers served by this group.
    site_id:
        Optional identifier of the site that sourced the names.
    site_type:
        Optional kind of site (``"web"``, ``"ftp"``, ...).

    """

    identifiers: tuple[Identifier, ...]
    site_id: int | str | None = None
    site_type: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "identifiers", tuple(self.identifiers))
        if not self.identifiers:
            msg = "Target part must contain at least one identifier"
            raise ConfigurationError(msg)


@dataclass(frozen=True)
class Target:
    """Aggregate of target parts plus the designated common name.

    Created once per renewal attempt by a target plugin and never
    mutated afterwards.
    """

    friendly_name: str | None
    common_name: Identifier | None
    parts: tuple[TargetPart, ...]
    user_csr: bytes | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "parts", tuple(self.parts))
        if not self.parts:
            msg = "Target must contain at least one part"
            raise ConfigurationError(msg)
        if self.common_name is not None and len(self.common_name.value) > MAX_COMMON_NAME:
            msg = (
                f"Common name '{self.common_name.value}' exceeds "
                f"{MAX_COMMON_NAME} characters"
            )
            raise ConfigurationError(msg)

    @classmethod
    def from_identifiers(
        cls,
        identifiers: list[Identifier] | tuple[Identifier, ...],
        friendly_name: str | None = None,
    ) -> Target:
        """Single-part target; the first short-enough identifier is the CN."""
        if not identifiers:
            msg = "Target requires at least one identifier"
            raise ConfigurationError(msg)
        common_name = next(
            (i for i in identifiers if len(i.value) <= MAX_COMMON_NAME),
            None,
        )
        return cls(
            friendly_name=friendly_name or (common_name or identifiers[0]).value,
            common_name=common_name,
            parts=(TargetPart(tuple(identifiers)),),
        )

    @property
    def display_name(self) -> Identifier:
        """Common name, or the first identifier of the first part."""
        return self.common_name or self.parts[0].identifiers[0]

    @property
    def identifiers(self) -> tuple[Identifier, ...]:
        """Distinct identifiers of all parts, in first-seen order."""
        return tuple(dict.fromkeys(i for p in self.parts for i in p.identifiers))

    def __str__(self) -> str:
        text = self.display_name.value
        count = len(self.identifiers)
        if count > 1:
            text += f" and {count - 1} alternative{'s' if count > 2 else ''}"
        return text

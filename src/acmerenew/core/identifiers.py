"""Certificate subject identifiers.

A tagged union of :class:`DnsIdentifier`, :class:`IpIdentifier` and
:class:`UnknownIdentifier`.  All three are frozen value objects whose
equality is based on the normalised value: DNS names are stored in
lower-case A-label (punycode) form, IP addresses in their canonical
``ipaddress`` text form, unknown values verbatim.
"""

from __future__ import annotations

import encodings.idna
import ipaddress
from dataclasses import dataclass
from typing import ClassVar

from acmerenew.core.types import IdentifierType

MAX_COMMON_NAME = 64
"""Maximum length of the subject common name (RFC 5280 ub-common-name)."""

_MAX_LABEL_LENGTH = 63
_ACE_PREFIX = "xn--"


def _to_ascii(value: str) -> str:
    """Normalize a DNS name to lower-case A-label form, label by label."""
    labels = value.strip().rstrip(".").split(".")
    encoded: list[str] = []
    for label in labels:
        if label == "*":
            encoded.append(label)
            continue
        try:
            label.encode("ascii")
            ascii_label = label
        except UnicodeEncodeError:
            try:
                ascii_label = encodings.idna.ToASCII(label).decode("ascii")
            except UnicodeError as exc:
                msg = f"Invalid internationalized label '{label}' in '{value}'"
                raise ValueError(msg) from exc
        if len(ascii_label) > _MAX_LABEL_LENGTH:
            msg = f"Label '{label}' exceeds {_MAX_LABEL_LENGTH} characters"
            raise ValueError(msg)
        encoded.append(ascii_label.lower())
    return ".".join(encoded)


def _to_unicode(value: str) -> str:
    labels = []
    for label in value.split("."):
        if label.startswith(_ACE_PREFIX):
            try:
                labels.append(encodings.idna.ToUnicode(label))
                continue
            except UnicodeError:
                pass
        labels.append(label)
    return ".".join(labels)


@dataclass(frozen=True)
class Identifier:
    """Base value object.  Use the subclasses."""

    value: str
    type: ClassVar[IdentifierType] = IdentifierType.UNKNOWN

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class DnsIdentifier(Identifier):
    """DNS name, stored in A-label form.

    >>> DnsIdentifier("Bücher.Example").value
    'xn--bcher-kva.example'
    """

    type: ClassVar[IdentifierType] = IdentifierType.DNS

    def __post_init__(self) -> None:
        if not self.value or not self.value.strip():
            msg = "DNS identifier must not be empty"
            raise ValueError(msg)
        object.__setattr__(self, "value", _to_ascii(self.value))

    @property
    def unicode_value(self) -> str:
        """U-label form for display purposes."""
        return _to_unicode(self.value)

    @property
    def is_wildcard(self) -> bool:
        return self.value.startswith("*.")


@dataclass(frozen=True)
class IpIdentifier(Identifier):
    """IPv4 or IPv6 address, stored in canonical text form."""

    type: ClassVar[IdentifierType] = IdentifierType.IP

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", str(ipaddress.ip_address(self.value.strip())))

    @property
    def address(self) -> ipaddress.IPv4Address | ipaddress.IPv6Address:
        return ipaddress.ip_address(self.value)


@dataclass(frozen=True)
class UnknownIdentifier(Identifier):
    """Subject alternative name of a type the pipeline does not handle."""

    type: ClassVar[IdentifierType] = IdentifierType.UNKNOWN


def parse_identifier(text: str) -> Identifier:
    """Parse user input as an IP address when possible, DNS name otherwise."""
    try:
        return IpIdentifier(text)
    except ValueError:
        return DnsIdentifier(text)


def ip_from_octets(octets: bytes | str) -> Identifier:
    """Build an identifier from the raw octets of an ``iPAddress`` SAN.

    *octets* may be the raw bytes or a hex dump such as ``"#7f000001"``
    (the ``#``-prefixed form some toolkits use to print octet strings).
    Four octets give IPv4 dotted-decimal, sixteen give colon-grouped
    IPv6; anything else (e.g. an address/mask pair from a name
    constraint) is kept as an :class:`UnknownIdentifier`.
    """
    raw = octets
    if isinstance(octets, str):
        text = octets.strip().removeprefix("#").removeprefix("0x").replace(":", "")
        try:
            raw = bytes.fromhex(text)
        except ValueError:
            return UnknownIdentifier(octets)
    if len(raw) in (4, 16):
        return IpIdentifier(str(ipaddress.ip_address(raw)))
    return UnknownIdentifier(octets if isinstance(octets, str) else "#" + raw.hex())


def identifier_from_san(kind: str, raw: str | bytes) -> Identifier:
    """Classify one subject alternative name entry.

    Parameters
    ----------
    kind:
        ``"dns"`` for dNSName, ``"ip"`` for iPAddress, anything else for
        other general name types.
    raw:
        The entry value: text for DNS and unknown types, octets (or a
        ``#``-prefixed hex dump) for IP addresses.

    """
    if kind == "dns":
        return DnsIdentifier(raw if isinstance(raw, str) else raw.decode("ascii"))
    if kind == "ip":
        return ip_from_octets(raw)
    return UnknownIdentifier(raw if isinstance(raw, str) else raw.hex())

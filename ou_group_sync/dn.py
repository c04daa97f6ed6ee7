"""
Structured distinguished names.

Directory names are parsed once at the boundary into a ``DistinguishedName``
value (an ordered sequence of relative names, each an ordered sequence of
attribute type/value pairs) so the reconciliation code never works on raw
DN strings.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ldap3.core.exceptions import LDAPInvalidDnError
from ldap3.utils.dn import escape_rdn, parse_dn as ldap3_parse_dn

OU_ATTRIBUTE_TYPE = 'OU'

_ESCAPE_PATTERN = re.compile(r'((?:\\[0-9A-Fa-f]{2})+)|\\(.)')


class DistinguishedNameError(ValueError):
    """Raised when a distinguished name cannot be parsed."""
    pass


@dataclass(frozen=True)
class RelativeName:
    """One DN component; multi-valued RDNs carry more than one pair."""

    attributes: Tuple[Tuple[str, str], ...]

    @property
    def first_type(self) -> str:
        return self.attributes[0][0]

    @property
    def first_value(self) -> str:
        return self.attributes[0][1]

    def is_organizational_unit(self) -> bool:
        # Only the first pair is inspected; an OU value in a later position of
        # a multi-valued RDN is not recognised.
        return self.first_type.upper() == OU_ATTRIBUTE_TYPE


@dataclass(frozen=True)
class DistinguishedName:
    """Parsed distinguished name, leaf component first."""

    raw: str
    rdns: Tuple[RelativeName, ...]

    def ou_names(self, exclude: Optional[str] = None) -> List[str]:
        """
        Get OU values along the name, in order.

        Args:
            exclude: OU value to leave out (the configured root container)

        Returns:
            List of OU names from the leaf towards the root
        """
        return [
            rdn.first_value for rdn in self.rdns
            if rdn.is_organizational_unit() and rdn.first_value != exclude
        ]

    def __str__(self) -> str:
        return self.raw


def _unescape(value: str) -> str:
    """Resolve backslash escapes (``\\,`` and ``\\2C`` forms) in an attribute value."""
    if '\\' not in value:
        return value

    def replace(match):
        hex_run = match.group(1)
        if hex_run is None:
            return match.group(2)
        # A run of hex escapes holds UTF-8 bytes
        raw = bytes.fromhex(hex_run.replace('\\', ''))
        try:
            return raw.decode('utf-8')
        except UnicodeDecodeError:
            return raw.decode('latin-1')

    return _ESCAPE_PATTERN.sub(replace, value)


def parse_dn(dn: str) -> DistinguishedName:
    """
    Parse a DN string into a structured ``DistinguishedName``.

    Args:
        dn: Distinguished name as returned by the directory

    Returns:
        Parsed distinguished name

    Raises:
        DistinguishedNameError: If the DN is empty or malformed
    """
    if not dn or not dn.strip():
        raise DistinguishedNameError("Empty distinguished name")

    try:
        components = ldap3_parse_dn(dn, escape=False, strip=True)
    except LDAPInvalidDnError as e:
        raise DistinguishedNameError(f"Invalid distinguished name '{dn}': {e}")

    rdns = []
    current = []
    for attr_type, attr_value, separator in components:
        current.append((attr_type, _unescape(attr_value)))
        # '+' joins the next pair into the same relative name
        if separator != '+':
            rdns.append(RelativeName(tuple(current)))
            current = []

    if current:
        rdns.append(RelativeName(tuple(current)))

    return DistinguishedName(raw=dn, rdns=tuple(rdns))


def group_dn(display_name: str, group_base_dn: str) -> str:
    """Build the DN of the managed group for a display name."""
    return f"CN={escape_rdn(display_name)},{group_base_dn}"

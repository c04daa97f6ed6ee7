"""
OU description index.

Maps each OU's directory name to the administrator-assigned display name held
in its description attribute. Only OUs with a description get a managed group.
"""

import logging
from collections.abc import Mapping
from typing import Iterable, Iterator

from ou_group_sync.models import OrganizationalUnit

logger = logging.getLogger(__name__)


class OUDisplayNameMap(Mapping):
    """Read-only mapping of raw OU name to group display name."""

    def __init__(self, entries: Iterable = ()):
        self._entries = dict(entries)

    def __getitem__(self, ou_name: str) -> str:
        return self._entries[ou_name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"OUDisplayNameMap({self._entries!r})"


def build_display_name_map(organizational_units: Iterable[OrganizationalUnit]) -> OUDisplayNameMap:
    """
    Build the OU name to display name map from an OU listing.

    OUs with an empty description are skipped. When the same OU name appears
    more than once the later description wins.

    Args:
        organizational_units: OU listing in directory order

    Returns:
        Immutable display name map
    """
    entries = {}
    for ou in organizational_units:
        if not ou.description:
            logger.debug(f"Skipping OU without description: {ou.dn}")
            continue

        if ou.name in entries and entries[ou.name] != ou.description:
            logger.warning(f"Duplicate OU name '{ou.name}': "
                           f"'{entries[ou.name]}' replaced by '{ou.description}'")
        entries[ou.name] = ou.description
        logger.info(f"OU {ou.name} -> group '{ou.description}'")

    logger.info(f"Indexed {len(entries)} OUs with a description")
    return OUDisplayNameMap(entries)

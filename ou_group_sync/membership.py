"""
Membership resolution.

A user becomes a member of the group of every described OU found along its
distinguished name, not just the immediate parent OU.
"""

import logging
from typing import List, Optional, Sequence

from ou_group_sync.directory import DirectoryError
from ou_group_sync.dn import group_dn
from ou_group_sync.index import OUDisplayNameMap
from ou_group_sync.models import DirectoryUser, SyncResult

logger = logging.getLogger(__name__)


class MembershipResolver:
    """Adds users to the groups of their ancestor OUs."""

    def __init__(self, directory, group_base_dn: str, user_base_ou: Optional[str] = None):
        """
        Args:
            directory: Directory client providing ``add_member``
            group_base_dn: Container the managed groups live in
            user_base_ou: Root OU name that is never a group target
        """
        self.directory = directory
        self.group_base_dn = group_base_dn
        self.user_base_ou = user_base_ou

    def target_groups(self, user: DirectoryUser, display_names: OUDisplayNameMap) -> List[str]:
        """
        Get the display names of the groups a user belongs in, in DN order.

        Ancestor OUs sharing a description resolve to one group, listed once.
        """
        targets = [
            display_names[ou_name]
            for ou_name in user.dn.ou_names(exclude=self.user_base_ou)
            if ou_name in display_names
        ]
        return list(dict.fromkeys(targets))

    def fill(self, users: Sequence[DirectoryUser], display_names: OUDisplayNameMap) -> SyncResult:
        """
        Add every user to the groups resolved from its OU ancestry.

        Args:
            users: Enabled, mail-capable users
            display_names: OU name to display name map

        Returns:
            SyncResult with the member count and the first error, if any
        """
        result = SyncResult()

        for user in users:
            targets = self.target_groups(user, display_names)
            if not targets:
                logger.debug(f"No managed group for {user.dn_string}")
                result.users_skipped += 1
                continue

            try:
                for display_name in targets:
                    target_dn = group_dn(display_name, self.group_base_dn)
                    self.directory.add_member(target_dn, user.dn_string)
                    result.members_added += 1
                    logger.info(f"Added {user.dn_string} to {display_name}")
            except DirectoryError as e:
                logger.error(f"Membership fill stopped at {user.dn_string}: {e}")
                result.error = e
                break

        logger.info(f"Memberships added: {result.members_added}, "
                    f"users without a managed group: {result.users_skipped}")
        return result

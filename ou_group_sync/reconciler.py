"""
Group reconciliation.

Every display name in the OU index gets a freshly created group: any existing
group with the same name is deleted first, then the group is added again.
Groups are never left alone, so two consecutive runs both delete and recreate.
"""

import logging
from typing import Sequence

from ou_group_sync.directory import DirectoryError
from ou_group_sync.dn import group_dn
from ou_group_sync.index import OUDisplayNameMap
from ou_group_sync.models import MailGroup, SyncResult

logger = logging.getLogger(__name__)


class GroupReconciler:
    """Deletes and recreates one group per indexed OU."""

    def __init__(self, directory, group_base_dn: str):
        """
        Args:
            directory: Directory client providing ``delete_entry`` and ``add_group``
            group_base_dn: Container the managed groups are created in
        """
        self.directory = directory
        self.group_base_dn = group_base_dn

    def reconcile(self, display_names: OUDisplayNameMap,
                  existing_groups: Sequence[MailGroup]) -> SyncResult:
        """
        Recreate the group for every display name.

        The existing group list is the snapshot taken before any write and is
        not re-read. A display name shared by several OUs is recreated once per
        OU; the group added for the earlier OU is deleted first.

        The first directory error stops the pass; groups already recreated
        stay as they are.

        Args:
            display_names: OU name to display name map
            existing_groups: Groups listed under the group base

        Returns:
            SyncResult with delete/create counts and the first error, if any
        """
        result = SyncResult()
        # Groups added during this pass, by display name
        created = {}

        for ou_name, display_name in display_names.items():
            try:
                if display_name in created:
                    logger.warning(f"OU {ou_name} repeats group '{display_name}', recreating it")
                    self.directory.delete_entry(created.pop(display_name))
                    result.groups_deleted += 1
                else:
                    result.groups_deleted += self._delete_existing(display_name, existing_groups)
                created[display_name] = self._create_group(display_name)
                result.groups_created += 1
            except DirectoryError as e:
                logger.error(f"Reconciliation stopped at OU {ou_name} (group '{display_name}'): {e}")
                result.error = e
                break

        logger.info(f"Groups reconciled: {result.groups_deleted} deleted, "
                    f"{result.groups_created} created")
        return result

    def _delete_existing(self, display_name: str, existing_groups: Sequence[MailGroup]) -> int:
        deleted = 0
        for group in existing_groups:
            if group.name == display_name:
                logger.info(f"Deleting existing group {group.dn}")
                self.directory.delete_entry(group.dn)
                deleted += 1
        return deleted

    def _create_group(self, display_name: str):
        dn = group_dn(display_name, self.group_base_dn)
        logger.info(f"Adding group {dn}")
        self.directory.add_group(dn, display_name)
        return dn

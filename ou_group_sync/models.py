"""
Directory snapshot entities and the sync outcome record.

All values here are read once at the start of a run and never mutated; the
``SyncResult`` counters are the only state that grows while writes happen.
"""

from dataclasses import dataclass
from typing import Optional

from ou_group_sync.dn import DistinguishedName


@dataclass(frozen=True)
class OrganizationalUnit:
    """OU as listed under the user base; description is the desired group name."""

    dn: str
    name: str
    description: str = ''


@dataclass(frozen=True)
class MailGroup:
    """Group that existed under the group base when the run started."""

    dn: str
    name: str


@dataclass(frozen=True)
class DirectoryUser:
    """Enabled, mail-capable user."""

    dn: DistinguishedName

    @property
    def dn_string(self) -> str:
        return self.dn.raw


@dataclass
class SyncResult:
    """
    Outcome of a reconcile or fill pass.

    Counts reflect writes that succeeded before ``error`` (the first failure,
    if any) stopped the pass.
    """

    groups_deleted: int = 0
    groups_created: int = 0
    members_added: int = 0
    users_skipped: int = 0
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


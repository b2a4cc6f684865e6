"""
Backup owner election for a replica set.

Every member runs the same rule against its own view of the replica set:
the backup is taken by the secondary whose host identifier sorts lowest.
No coordination between members is needed, but two members that observe
different membership lists (e.g. during a reconfiguration) may both decide
they are the owner. That race is accepted.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional


@dataclass(frozen=True)
class ClusterStatus:
    """Snapshot of the replica set as seen by this node."""

    this_node: Optional[str]
    primary_node: Optional[str]
    member_hosts: FrozenSet[str] = field(default_factory=frozenset)
    is_primary: bool = False

    @classmethod
    def from_hello(cls, response: Dict[str, Any]) -> 'ClusterStatus':
        """
        Build a status snapshot from an isMaster/hello command reply.

        Args:
            response: Reply document of the isMaster (or hello) command

        Returns:
            ClusterStatus; keys missing from the reply become None or empty
        """
        if 'isWritablePrimary' in response:
            is_primary = bool(response['isWritablePrimary'])
        else:
            is_primary = bool(response.get('ismaster', False))

        hosts = response.get('hosts') or []

        return cls(
            this_node=response.get('me'),
            primary_node=response.get('primary'),
            member_hosts=frozenset(str(host) for host in hosts),
            is_primary=is_primary
        )


@dataclass(frozen=True)
class ClusterMembership:
    """Membership view used to derive a backup decision."""

    node: Optional[str]
    primary: Optional[str]
    secondaries: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class BackupDecision:
    """Whether this node owns the backup, and why."""

    eligible: bool
    membership: ClusterMembership
    reason: str = ''

    def __bool__(self):
        return self.eligible


def resolve(status: ClusterStatus) -> BackupDecision:
    """
    Decide whether this node is the backup owner.

    The owner is the lexicographically lowest member host once the primary
    is removed, and only if this node is not itself the primary.

    Args:
        status: Cluster status snapshot

    Returns:
        BackupDecision. Never raises; malformed snapshots are not eligible.
    """
    if not status.member_hosts or not status.primary_node:
        return BackupDecision(
            eligible=False,
            membership=ClusterMembership(node=status.this_node, primary=status.primary_node),
            reason="Node is not part of a replica set"
        )

    secondaries = sorted(host for host in status.member_hosts if host != status.primary_node)
    membership = ClusterMembership(
        node=status.this_node,
        primary=status.primary_node,
        secondaries=secondaries
    )

    if status.is_primary:
        return BackupDecision(False, membership, "This node is the primary")

    if not secondaries:
        return BackupDecision(False, membership, "Replica set has no secondaries")

    if not status.this_node:
        return BackupDecision(False, membership, "Node did not report its own host name")

    lowest = secondaries[0]
    if status.this_node != lowest:
        return BackupDecision(
            False,
            membership,
            f"This node ({status.this_node}) is not the lowest secondary ({lowest})"
        )

    return BackupDecision(True, membership, f"This node ({status.this_node}) is the lowest secondary")

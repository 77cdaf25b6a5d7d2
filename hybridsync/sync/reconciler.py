"""Meta index reconciliation.

Compares a local and a remote meta index and produces the patches that bring
the local store in line with the remote. Fingerprint equality is the only
conflict signal: a differing remote fingerprint always wins.
"""

from ..storage.base import MetaIndex
from .commit import Patch, Reason, RemoveCommit, Staging, Target, UpdateCommit


def diff(local: MetaIndex, remote: MetaIndex) -> list[Patch]:
    """Compute the patches needed to make local match remote.

    Patches for keys known locally come first (in local index order),
    followed by patches for keys only present remotely.

    Args:
        local: Meta index of the local store.
        remote: Meta index of the remote store.

    Returns:
        Ordered list of local-targeted update/remove commits.
    """
    patches: list[Patch] = []

    for key, entry in local.items():
        remote_entry = remote.get(key)
        if remote_entry is None:
            patches.append(
                RemoveCommit(
                    key=key,
                    target=Target.LOCAL,
                    reason=Reason.REMOTE_REMOVED,
                    staging=Staging.PATCHING,
                )
            )
        elif remote_entry["etag"] != entry["etag"]:
            patches.append(
                UpdateCommit(
                    key=key,
                    target=Target.LOCAL,
                    reason=Reason.REMOTE_UPDATED,
                    staging=Staging.PATCHING,
                )
            )

    for key in remote:
        if key not in local:
            patches.append(
                UpdateCommit(
                    key=key,
                    target=Target.LOCAL,
                    reason=Reason.REMOTE_ADDED,
                    staging=Staging.PATCHING,
                )
            )

    return patches

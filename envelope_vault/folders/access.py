"""
Folder Access Registry — which principals may operate on a folder.

Grants are unique per (folder, user): granting again updates the level,
revoking a missing grant is a no-op. Workspace operations fan out to the
workspace folder and to every linked channel folder as a best-effort
saga; failures are collected in a ``FanOutReport`` and nothing that
already succeeded is rolled back.

Security Note:
    Access levels are enforced by the Metadata Store ACL only. The shared
    key of a folder is derived from the folder identifier, so anyone who
    knows the identifier can derive it; revoking a grant denies API access
    but not decryption of blobs already fetched.
"""
import asyncio
import logging
from typing import Awaitable, Callable, NamedTuple, Optional

from ..backends.base import MetadataStore
from ..exceptions import GrantNotFound
from ..models import AccessLevel, FanOutReport, FolderAccessGrant
from ..conf import VaultConfig

logger = logging.getLogger("envelope.vault")


class KeyScope(NamedTuple):
    """Arguments of KeyDerivation.derive for one resource."""

    seed: str
    scope_id: str
    purpose: str


class FolderAccessRegistry:
    """Grants, revokes and queries folder access."""

    def __init__(self, store: MetadataStore, config: Optional[VaultConfig] = None):
        self._store = store
        self.config = config or VaultConfig()

    def scope_for(
        self, owner_id: str, folder_id: Optional[str], purpose: str
    ) -> KeyScope:
        """Key scope a resource is written under.

        Folder-scoped resources use the folder's shared scope, everything
        else the owner's personal scope for ``purpose``.
        """
        if folder_id:
            return KeyScope(folder_id, folder_id, self.config.shared_purpose)
        return KeyScope(owner_id, owner_id, purpose)

    async def grant(
        self,
        folder_id: str,
        user_id: str,
        level: AccessLevel = AccessLevel.WRITE,
        granted_by: Optional[str] = None,
    ) -> FolderAccessGrant:
        grant = await self._store.upsert_grant(
            FolderAccessGrant(
                folder_id=folder_id,
                user_id=user_id,
                access_level=AccessLevel(level),
                granted_by=granted_by,
            )
        )
        logger.info(
            "Granted %s on folder %s to user %s",
            grant.access_level.value, folder_id, user_id,
        )
        return grant

    async def revoke(self, folder_id: str, user_id: str) -> bool:
        """Remove a grant; returns False when there was nothing to remove."""
        removed = await self._store.delete_grant(folder_id, user_id)
        if removed:
            logger.info("Revoked folder %s from user %s", folder_id, user_id)
        return removed

    async def update(
        self, folder_id: str, user_id: str, level: AccessLevel
    ) -> FolderAccessGrant:
        """Change the level of an existing grant.

        Raises:
            GrantNotFound: user_id holds no grant on folder_id.
        """
        grant = await self._store.update_grant_level(
            folder_id, user_id, AccessLevel(level)
        )
        if grant is None:
            raise GrantNotFound(folder_id, user_id)
        return grant

    async def check(self, folder_id: str, user_id: str) -> Optional[AccessLevel]:
        grant = await self._store.get_grant(folder_id, user_id)
        return grant.access_level if grant else None

    async def shared_folder_ids(self, user_id: str) -> list[str]:
        """Folders user_id was granted access to."""
        return [g.folder_id for g in await self._store.list_user_grants(user_id)]

    # ------------------------------------------------------------------
    # Workspace fan-out
    # ------------------------------------------------------------------

    @staticmethod
    async def _fan_out(
        targets: list[str],
        operation: Callable[[str], Awaitable[object]],
        action: str,
    ) -> FanOutReport:
        results = await asyncio.gather(
            *(operation(target) for target in targets), return_exceptions=True,
        )
        report = FanOutReport()
        for target, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.error("Failed to %s access for %s: %s", action, target, result)
                report.failed[target] = str(result)
            elif isinstance(result, BaseException):
                raise result
            else:
                report.succeeded.append(target)
        return report

    async def _workspace_folders(self, workspace_id: str) -> list[str]:
        workspace = await self._store.get_workspace(workspace_id)
        if workspace is None or not workspace.folder_id:
            logger.warning("Workspace %s has no linked folder", workspace_id)
            return []
        return [workspace.folder_id, *workspace.channel_folder_ids]

    async def grant_workspace_member(
        self,
        workspace_id: str,
        user_id: str,
        granted_by: Optional[str] = None,
        level: AccessLevel = AccessLevel.WRITE,
    ) -> FanOutReport:
        """Grant user_id access to the workspace folder and its channel folders."""
        folder_ids = await self._workspace_folders(workspace_id)
        report = await self._fan_out(
            folder_ids,
            lambda fid: self.grant(fid, user_id, level, granted_by),
            "grant",
        )
        logger.info(
            "Workspace %s grant for user %s: %d ok, %d failed",
            workspace_id, user_id, len(report.succeeded), len(report.failed),
        )
        return report

    async def revoke_workspace_member(
        self, workspace_id: str, user_id: str
    ) -> FanOutReport:
        """Revoke user_id from the workspace folder and its channel folders."""
        folder_ids = await self._workspace_folders(workspace_id)
        report = await self._fan_out(
            folder_ids, lambda fid: self.revoke(fid, user_id), "revoke",
        )
        logger.info(
            "Workspace %s revoke for user %s: %d ok, %d failed",
            workspace_id, user_id, len(report.succeeded), len(report.failed),
        )
        return report

    async def sync_workspace_members(self, workspace_id: str) -> FanOutReport:
        """Grant write on the workspace folder and its channel folders to
        every member but the owner.

        The report is keyed by ``"{member_id}:{folder_id}"``.
        """
        workspace = await self._store.get_workspace(workspace_id)
        if workspace is None or not workspace.folder_id:
            logger.warning("Workspace %s has no linked folder", workspace_id)
            return FanOutReport()
        folder_ids = [workspace.folder_id, *workspace.channel_folder_ids]
        targets = [
            f"{member}:{folder_id}"
            for member in workspace.member_ids
            if member != workspace.owner_id
            for folder_id in folder_ids
        ]

        def grant_pair(target: str):
            member, folder_id = target.split(":", 1)
            return self.grant(
                folder_id, member, AccessLevel.WRITE, workspace.owner_id,
            )

        report = await self._fan_out(targets, grant_pair, "sync")
        logger.info(
            "Workspace %s member sync: %d ok, %d failed",
            workspace_id, len(report.succeeded), len(report.failed),
        )
        return report

    async def list(self, folder_id: str) -> list[FolderAccessGrant]:
        """Grants of folder_id, oldest first."""
        return await self._store.list_grants(folder_id)

"""
Folder Tree — hierarchy of vault folders owned by a principal.

Sibling names are unique per owner and parent, compared case-insensitively,
and checked before anything is written. Deleting a folder cascades to its
descendants, their files and grants, unless a collaborator workspace or
channel still references it or any descendant (guarded delete).
"""
import uuid
import logging
from typing import Optional

from ..backends.base import MetadataStore
from ..exceptions import ConstraintViolation
from ..models import Folder

logger = logging.getLogger("envelope.vault")

_MAX_NAME_LENGTH = 255


def _normalize_name(name: str) -> str:
    name = name.strip()
    if not name:
        raise ValueError("Folder name cannot be empty")
    if len(name) > _MAX_NAME_LENGTH:
        raise ValueError(f"Folder name cannot exceed {_MAX_NAME_LENGTH} characters")
    return name


class FolderTree:
    def __init__(self, store: MetadataStore):
        self._store = store

    async def get(self, folder_id: str) -> Folder:
        folder = await self._store.get_folder(folder_id)
        if folder is None:
            raise KeyError(f"Folder {folder_id} not found")
        return folder

    async def _check_unique(
        self,
        owner_id: str,
        parent_id: Optional[str],
        name: str,
        exclude_id: Optional[str] = None,
    ) -> list[Folder]:
        siblings = await self._store.list_child_folders(owner_id, parent_id)
        folded = name.casefold()
        for sibling in siblings:
            if sibling.id != exclude_id and sibling.name.casefold() == folded:
                raise ConstraintViolation(
                    f"A folder named {sibling.name!r} already exists here"
                )
        return siblings

    async def create(
        self, owner_id: str, name: str, parent_id: Optional[str] = None
    ) -> Folder:
        """Create a folder at the end of its siblings' display order."""
        name = _normalize_name(name)
        if parent_id is not None:
            await self.get(parent_id)
        siblings = await self._check_unique(owner_id, parent_id, name)
        order = max((s.display_order for s in siblings), default=-1) + 1
        folder = await self._store.insert_folder(
            Folder(
                id=str(uuid.uuid4()),
                owner_id=owner_id,
                name=name,
                parent_id=parent_id,
                display_order=order,
            )
        )
        logger.info("Created folder %s for owner %s", folder.id, owner_id)
        return folder

    async def ensure(
        self, owner_id: str, name: str, parent_id: Optional[str] = None
    ) -> Folder:
        """Return the owner's folder called name under parent_id, creating it."""
        folded = _normalize_name(name).casefold()
        for sibling in await self._store.list_child_folders(owner_id, parent_id):
            if sibling.name.casefold() == folded:
                return sibling
        return await self.create(owner_id, name, parent_id)

    async def rename(self, folder_id: str, name: str) -> Folder:
        name = _normalize_name(name)
        folder = await self.get(folder_id)
        await self._check_unique(folder.owner_id, folder.parent_id, name, exclude_id=folder_id)
        return await self._store.update_folder(folder_id, name=name)

    async def move(self, folder_id: str, new_parent_id: Optional[str]) -> Folder:
        """Re-parent a folder.

        Raises:
            ConstraintViolation: Name clash at the destination, or the
                destination is the folder itself or one of its descendants.
        """
        folder = await self.get(folder_id)
        if new_parent_id is not None:
            for ancestor in await self.path(new_parent_id):
                if ancestor.id == folder_id:
                    raise ConstraintViolation(
                        f"Cannot move folder {folder_id} into itself or a descendant"
                    )
        await self._check_unique(
            folder.owner_id, new_parent_id, folder.name, exclude_id=folder_id,
        )
        return await self._store.update_folder(folder_id, parent_id=new_parent_id)

    async def delete(self, folder_id: str) -> bool:
        """Delete a folder and everything below it.

        Returns:
            False when the folder did not exist.

        Raises:
            ConstraintViolation: A workspace or channel references the folder
                or one of its descendants; nothing is deleted.
        """
        for subfolder_id in await self._store.subtree_ids(folder_id):
            links = await self._store.folder_links(subfolder_id)
            if not links:
                continue
            link = links[0]
            where = "it" if subfolder_id == folder_id else "a subfolder"
            raise ConstraintViolation(
                f"Cannot delete folder: {where} is linked to {link.kind} "
                f"{link.name!r}. Delete the {link.kind} instead."
            )
        deleted = await self._store.delete_folder(folder_id)
        if deleted:
            logger.info("Deleted folder %s", folder_id)
        return deleted

    async def children(
        self, owner_id: str, parent_id: Optional[str] = None
    ) -> list[Folder]:
        """Owned children of parent_id; at root, also root folders shared with owner_id."""
        folders = await self._store.list_child_folders(owner_id, parent_id)
        if parent_id is None:
            grants = await self._store.list_user_grants(owner_id)
            shared = await self._store.get_folders([g.folder_id for g in grants])
            seen = {f.id for f in folders}
            for folder in shared:
                if folder.parent_id is None and folder.id not in seen:
                    seen.add(folder.id)
                    folders.append(folder)
            folders.sort(key=lambda f: f.display_order)
        return folders

    async def path(self, folder_id: Optional[str]) -> list[Folder]:
        """Breadcrumb from the root down to folder_id."""
        trail: list[Folder] = []
        seen: set[str] = set()
        current = folder_id
        while current and current not in seen:
            seen.add(current)
            folder = await self._store.get_folder(current)
            if folder is None:
                break
            trail.insert(0, folder)
            current = folder.parent_id
        return trail

    async def reorder(self, folder_ids: list[str]) -> list[Folder]:
        """Set display_order to each folder's position in folder_ids."""
        updated = []
        for index, folder_id in enumerate(folder_ids):
            folder = await self._store.update_folder(folder_id, display_order=index)
            if folder is not None:
                updated.append(folder)
        return updated

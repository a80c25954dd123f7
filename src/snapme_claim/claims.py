"""Customer self-service search over claimable folders."""

import logging

from snapme_claim.errors import SnapMeError
from snapme_claim.folders import PhotoFolderManager
from snapme_claim.models import PhotoFolder, SearchMode, SearchOutcome

logger = logging.getLogger(__name__)


class ClaimSearchService:
    """Finds a customer's folders by phone number or name.

    Only ``ready`` and ``claimed`` folders are ever returned, so pending or
    expired sessions are never discoverable without staff access.
    """

    def __init__(self, manager: PhotoFolderManager) -> None:
        self.manager = manager

    async def search(self, term: str | None, mode: SearchMode | str = SearchMode.PHONE) -> SearchOutcome:
        term = (term or "").strip()
        if not term:
            return SearchOutcome()

        try:
            folders = await self.manager.search(term, mode, for_customer=True)
        except SnapMeError as e:
            logger.error(f"Customer search for '{term}' failed: {e}")
            return SearchOutcome(error=f"Search failed: {e}")

        logger.debug(f"Customer search '{term}' ({mode}) matched {len(folders)} folder(s)")
        return SearchOutcome(folders=folders)

    async def open_shared_link(self, folder_id: str) -> PhotoFolder | None:
        """Resolve a shared ``?folder=<id>`` link to a visible folder."""
        return await self.manager.load_shared_folder(folder_id)

from __future__ import annotations

import logging
from typing import List

from albumqueue.application.access import AccessGate
from albumqueue.application.activity import ActivityCounter
from albumqueue.application.state import CoordinatorState
from albumqueue.crosscutting.logging import CorrelationContext, log_error, log_search_complete
from albumqueue.domain.entities import Album
from albumqueue.domain.ports import CatalogSearchService

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 20


class CatalogSearchWorkflow:
    """Turns free-text input into a list of albums, one search at a time.

    A newer search supersedes an older one without cancelling its network call;
    whatever the older call eventually returns is discarded.
    """

    def __init__(self, catalog: CatalogSearchService, gate: AccessGate,
                 state: CoordinatorState, activity: ActivityCounter,
                 limit: int = DEFAULT_SEARCH_LIMIT):
        self._catalog = catalog
        self._gate = gate
        self._state = state
        self._activity = activity
        self._limit = limit
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    async def search(self, term: str) -> List[Album]:
        """Search the catalog for albums matching ``term``.

        Failures land in the inline error slot; the album list is empty afterwards.
        Returns the albums this call published, or an empty list when it failed or
        was superseded.
        """
        self._generation += 1
        generation = self._generation

        self._activity.disallow_reload()
        self._state.clear_inline_error()
        self._state.update(albums=(), search_text=term)

        with CorrelationContext(search_term=term, stage='search'):
            async with self._activity.track():
                try:
                    await self._gate.ensure_access()
                    albums = await self._catalog.search_albums(
                        term, limit=self._limit, include_top_results=False
                    )
                except Exception as e:
                    if self._is_stale(generation):
                        logger.info(f"Discarding failure of superseded search #{generation}: {e}")
                        return []
                    log_error(logger, f"Catalog search failed for '{term}'", e)
                    self._state.set_inline_error(e)
                    return []

                if self._is_stale(generation):
                    logger.info(f"Discarding {len(albums)} albums from superseded search #{generation}")
                    return []

                albums = list(albums)
                self._state.update(albums=albums, status=f"Got {len(albums)} albums")
                log_search_complete(logger, term, len(albums), generation=generation)
                return albums

    async def reload(self) -> List[Album]:
        """Repeat the search for the current search text."""
        return await self.search(self._state.snapshot.search_text)

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation

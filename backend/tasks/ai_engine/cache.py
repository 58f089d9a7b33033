# tasks/ai_engine/cache.py

import logging
import threading
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from django.conf import settings
from django.core.cache import caches
from django.utils import timezone

from .contracts import AIMetadata, CachedProposal, EnrichmentProposal, SimilarityAnalysis

logger = logging.getLogger(__name__)

DEFAULT_PROPOSAL_TTL_SECONDS = 300


def _configured_ttl(ttl_seconds: Optional[int]) -> int:
    if ttl_seconds is not None:
        return ttl_seconds
    return getattr(settings, 'AI_PROPOSAL_CACHE_TTL', DEFAULT_PROPOSAL_TTL_SECONDS)


class ProposalCache:
    """
    Short-lived holding area for enrichment proposals that have no task yet.

    Entries are keyed by a fresh UUID per ``put`` and stop being readable
    once older than the TTL. There is no background timer: ``get`` evicts
    the entry it finds expired, and every ``put`` first sweeps all expired
    entries.

    All access to the map goes through one lock, so request threads may
    share an instance.

    The map lives in this process only. It does not survive restarts or
    span multiple instances; ``DjangoProposalCache`` offers the same
    interface on a shared cache for that case.
    """

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = timezone.now,
    ):
        """
        Args:
            ttl_seconds: Entry lifetime (default: AI_PROPOSAL_CACHE_TTL or 5 minutes).
            clock: Source of "now"; injectable for tests.
        """
        self.ttl = timedelta(seconds=_configured_ttl(ttl_seconds))
        self._clock = clock
        self._entries: Dict[str, CachedProposal] = {}
        self._lock = threading.Lock()

    def put(
        self,
        user_id: int,
        proposal: EnrichmentProposal,
        analysis: SimilarityAnalysis,
        metadata: AIMetadata,
    ) -> str:
        proposal_id = str(uuid.uuid4())
        entry = CachedProposal(
            proposal=proposal,
            similarity_analysis=analysis,
            metadata=metadata,
            user_id=user_id,
            created_at=self._clock(),
        )
        with self._lock:
            self._sweep()
            self._entries[proposal_id] = entry
        return proposal_id

    def get(self, proposal_id: Any) -> Optional[CachedProposal]:
        key = str(proposal_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            if self._is_expired(entry, self._clock()):
                self._entries.pop(key, None)
                return None

            return entry

    def discard(self, proposal_id: Any) -> None:
        with self._lock:
            self._entries.pop(str(proposal_id), None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _is_expired(self, entry: CachedProposal, now: datetime) -> bool:
        return now - entry.created_at > self.ttl

    def _sweep(self) -> None:
        # Caller holds the lock.
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"ProposalCache: evicted {len(expired)} expired proposals")


class DjangoProposalCache:
    """
    ``ProposalCache`` interface on Django's cache framework (Redis in
    multi-instance deployments). Expiry is delegated to the cache timeout.

    Failure-transparent: cache connectivity errors are logged and a read
    behaves like a miss.
    """

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        version: str = "v1",
        cache_alias: str = "default",
    ):
        """
        Args:
            ttl_seconds: Entry lifetime (default: AI_PROPOSAL_CACHE_TTL or 5 minutes).
            version: Key prefix version, bumped when the stored shape changes.
            cache_alias: The Django cache alias to use.
        """
        self.ttl = _configured_ttl(ttl_seconds)
        self.version = version
        self.cache_alias = cache_alias

    @property
    def _cache(self):
        return caches[self.cache_alias]

    def _key(self, proposal_id: Any) -> str:
        return f"enrichment_proposal_{self.version}_{proposal_id}"

    def put(
        self,
        user_id: int,
        proposal: EnrichmentProposal,
        analysis: SimilarityAnalysis,
        metadata: AIMetadata,
    ) -> str:
        proposal_id = str(uuid.uuid4())
        entry = CachedProposal(
            proposal=proposal,
            similarity_analysis=analysis,
            metadata=metadata,
            user_id=user_id,
            created_at=timezone.now(),
        )
        try:
            self._cache.set(self._key(proposal_id), entry.to_dict(), timeout=self.ttl)
        except Exception as e:
            logger.error(f"Proposal cache persistence failure: {str(e)}")
        return proposal_id

    def get(self, proposal_id: Any) -> Optional[CachedProposal]:
        try:
            payload = self._cache.get(self._key(proposal_id))
        except Exception as e:
            logger.error(f"Proposal cache retrieval failure: {str(e)}")
            return None

        if payload is None:
            return None
        return CachedProposal.from_dict(payload)

    def discard(self, proposal_id: Any) -> None:
        try:
            self._cache.delete(self._key(proposal_id))
        except Exception as e:
            logger.error(f"Proposal cache delete failure: {str(e)}")


_proposal_cache = None


def get_proposal_cache():
    """The process-wide proposal cache selected by AI_PROPOSAL_CACHE_BACKEND."""
    global _proposal_cache
    if _proposal_cache is None:
        backend = getattr(settings, 'AI_PROPOSAL_CACHE_BACKEND', 'memory')
        if backend == 'django':
            _proposal_cache = DjangoProposalCache()
        else:
            _proposal_cache = ProposalCache()
        logger.info(f"Proposal cache backend: {type(_proposal_cache).__name__}")
    return _proposal_cache

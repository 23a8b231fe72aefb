import logging
from typing import Dict, List
from pydantic import BaseModel, Field
from .matching import EPISODE_RULES, MOVIE_RULES, MatchRules
from .models import LibrarySyncState, MediaItem, Snapshot

logger = logging.getLogger(__name__)

class ReconcileResult(BaseModel):
    kind: str
    candidates: List[MediaItem] = Field(default_factory=list)
    outdated: List[MediaItem] = Field(default_factory=list)
    ambiguous: List[MediaItem] = Field(default_factory=list)

    @property
    def watched_mismatches(self) -> int:
        return sum(1 for item in self.candidates if item.is_watched_outdated)

    @property
    def resume_mismatches(self) -> int:
        return sum(1 for item in self.candidates if item.is_resume_outdated)

class SyncEngine:
    def merge(self, item: MediaItem, counterpart: MediaItem):
        """
        Raises the item's watch state to the maximum of both sides.
        Each field is flagged outdated only when its value actually changed.
        """
        max_play_count = max(item.play_count, counterpart.play_count)
        max_position = max(item.resume.position, counterpart.resume.position)

        if item.play_count != max_play_count:
            logger.debug(f"{item.display_name}: play count {item.play_count} -> {max_play_count}")
            item.play_count = max_play_count
            item.is_watched_outdated = True

        if item.resume.position != max_position:
            logger.debug(f"{item.display_name}: resume position {item.resume.position} -> {max_position}")
            item.resume.position = max_position
            item.is_resume_outdated = True

    def reconcile(self, subject: Snapshot, reference: Snapshot, rules: MatchRules) -> ReconcileResult:
        """
        Brings the subject snapshot's watch state up to the reference snapshot.
        Only subject items are modified; the reference is read-only.
        """
        result = ReconcileResult(kind=rules.kind)
        others = reference.items

        # 1. Items with no exact-state twin on the other side
        candidates = [
            item for item in subject.items
            if not any(rules.state_equal(item, other) for other in others)
        ]

        for item in candidates:
            # Flags describe this pass only
            item.is_watched_outdated = False
            item.is_resume_outdated = False

            # 2. Find the counterpart
            matches = [other for other in others if rules.same_title(item, other)]
            if not matches:
                continue
            if len(matches) > 1:
                logger.warning(f"Skipping {rules.kind} {item.display_name}: {len(matches)} titles match on the other library")
                result.ambiguous.append(item)
                continue

            # 3. Merge
            self.merge(item, matches[0])

        result.candidates = candidates
        result.outdated = [item for item in candidates if item.is_outdated]
        return result

    def reconcile_library(self, subject: LibrarySyncState, reference: LibrarySyncState) -> Dict[str, ReconcileResult]:
        results = {
            MOVIE_RULES.kind: self.reconcile(subject.movies, reference.movies, MOVIE_RULES),
            EPISODE_RULES.kind: self.reconcile(subject.episodes, reference.episodes, EPISODE_RULES),
        }
        for kind, result in results.items():
            logger.info(f"Found {len(result.outdated)} out of sync {kind}(s)")
            logger.info(f"  {result.watched_mismatches} watched mismatch(es)")
            logger.info(f"  {result.resume_mismatches} resume mismatch(es)")
        return results

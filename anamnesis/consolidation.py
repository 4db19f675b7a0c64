"""Memory consolidation: dedup, compression, archival and importance refresh.

One rule holds throughout: a record is only removed after a record that
carries its relationship ids has been durably written. ``forget()`` on the
engine is the only hard delete.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from anamnesis import config
from anamnesis.errors import ConsistencyConflict
from anamnesis.importance import age_days, score_record, type_adjusted
from anamnesis.storage.sqlite import SQLiteStorage
from anamnesis.text import extract_key_sentences, extract_keywords, overlap_ratio, text_similarity
from anamnesis.types import (
    ArchiveCriteria,
    MemoryContext,
    MemoryFilter,
    MemoryMetadata,
    MemoryRecord,
    MemorySource,
    MemoryType,
    new_id,
    utc_now,
)
from anamnesis.vector_index import VectorIndex

logger = logging.getLogger(__name__)

# Records produced by maintenance; never compressed or expired themselves
DERIVED_TYPES = (MemoryType.SUMMARY, MemoryType.ARCHIVE, MemoryType.PATTERN)


@dataclass
class ConsolidationReport:
    merged: int = 0
    compressed: int = 0
    summaries_created: int = 0
    archived: int = 0
    importance_updated: int = 0
    contradictions: int = 0
    relationships_discovered: int = 0
    indexed: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return dict(self.__dict__)


def select_better(a: MemoryRecord, b: MemoryRecord) -> MemoryRecord:
    """Survivor of a duplicate pair.

    Higher importance, then more recent last access, then more accesses,
    then the newer record.
    """
    if a.importance != b.importance:
        return a if a.importance > b.importance else b
    if a.last_accessed != b.last_accessed:
        return a if a.last_accessed > b.last_accessed else b
    if a.access_count != b.access_count:
        return a if a.access_count > b.access_count else b
    return a if a.created_at >= b.created_at else b


def merge_into(survivor: MemoryRecord, other: MemoryRecord) -> MemoryRecord:
    """Fold ``other`` into ``survivor`` in place and return it."""
    survivor.tags |= other.tags
    survivor.relationships |= other.relationships
    survivor.relationships.discard(survivor.id)
    survivor.relationships.discard(other.id)
    survivor.access_count += other.access_count
    survivor.importance = max(survivor.importance, other.importance)
    survivor.confidence = max(survivor.confidence, other.confidence)
    survivor.last_accessed = max(survivor.last_accessed, other.last_accessed)
    merged_from = survivor.metadata.extra.setdefault("merged_from", [])
    merged_from.append(other.id)
    return survivor


def are_similar(a: MemoryRecord, b: MemoryRecord) -> bool:
    """Cheap compression-cluster test: shared tags or keywords, created within a week."""
    tag_overlap = overlap_ratio(a.tags, b.tags)
    keyword_overlap = overlap_ratio(
        a.metadata.keywords or extract_keywords(a.content),
        b.metadata.keywords or extract_keywords(b.content),
    )
    close_in_time = abs(a.created_at - b.created_at) <= timedelta(days=config.CLUSTER_WINDOW_DAYS)
    return (
        tag_overlap > config.CLUSTER_TAG_OVERLAP or keyword_overlap > config.CLUSTER_KEYWORD_OVERLAP
    ) and close_in_time


def compression_rank(memory_type: MemoryType) -> int:
    """Position in COMPRESSION_PRIORITY; unlisted types go last."""
    try:
        return config.COMPRESSION_PRIORITY.index(memory_type.value)
    except ValueError:
        return len(config.COMPRESSION_PRIORITY)


def _rollup(counts: Counter, limit: int = 5) -> List[str]:
    return [item for item, _ in counts.most_common(limit)]


def summarize_memory_cluster(cluster: List[MemoryRecord]) -> str:
    """One composite text for a cluster, with a time-range footer."""
    if not cluster:
        return ""
    important = [m for m in cluster if m.importance > config.SUMMARY_IMPORTANT_THRESHOLD]
    regular = [m for m in cluster if m.importance <= config.SUMMARY_IMPORTANT_THRESHOLD]

    lines = [f"Summary of {len(cluster)} related memories:", ""]
    if important:
        lines.append("Key Information:")
        for memory in important:
            lines.append(f"- {extract_key_sentences(memory.content, config.SUMMARY_SENTENCES)}")
        lines.append("")
    if regular:
        topics: Counter = Counter()
        entities: Counter = Counter()
        keywords: Counter = Counter()
        for memory in regular:
            topics.update(memory.metadata.topics)
            entities.update(e.name for e in memory.metadata.entities)
            keywords.update(memory.metadata.keywords or extract_keywords(memory.content))
        lines.append("Additional Context:")
        if topics:
            lines.append(f"Topics discussed: {', '.join(_rollup(topics))}")
        if entities:
            lines.append(f"Key entities: {', '.join(_rollup(entities))}")
        if keywords:
            lines.append(f"Keywords: {', '.join(_rollup(keywords, 10))}")
        lines.append("")

    start = min(m.created_at for m in cluster)
    end = max(m.created_at for m in cluster)
    lines.append(f"Time period: {start.date().isoformat()} to {end.date().isoformat()}")
    lines.append(f"Original memories: {len(cluster)}")
    return "\n".join(lines)


def build_consolidated_record(
    memory_type: MemoryType,
    sources: List[MemoryRecord],
    content: str,
    extra: Dict[str, object],
    importance: Optional[float] = None,
) -> MemoryRecord:
    """A SUMMARY or ARCHIVE record that keeps every source's links reachable."""
    tags = set().union(*(m.tags for m in sources)) | {"compressed", "summary"}
    if memory_type == MemoryType.ARCHIVE:
        tags = (tags - {"summary"}) | {"archive"}
    source_ids = {m.id for m in sources}
    relationships = set().union(*(m.relationships for m in sources)) - source_ids
    keywords = Counter()
    topics = Counter()
    for m in sources:
        keywords.update(m.metadata.keywords)
        topics.update(m.metadata.topics)
    if importance is None:
        avg = sum(m.importance for m in sources) / len(sources)
        importance = min(config.SUMMARY_IMPORTANCE_CAP, avg + config.SUMMARY_IMPORTANCE_BOOST)
    users = {m.context.user_id for m in sources}
    workspaces = {m.context.workspace_id for m in sources}
    return MemoryRecord(
        id=new_id(),
        type=memory_type,
        content=content,
        importance=importance,
        confidence=max(m.confidence for m in sources),
        tags=tags,
        # Source ids stay reachable (as soft references) from the replacement
        relationships=relationships | source_ids,
        source=MemorySource(type="system", identifier="consolidation", reliability=0.8),
        context=MemoryContext(
            user_id=users.pop() if len(users) == 1 else None,
            workspace_id=workspaces.pop() if len(workspaces) == 1 else None,
        ),
        metadata=MemoryMetadata(
            topics=_rollup(topics, 10),
            keywords=_rollup(keywords, 30),
            extra={"original_memories": sorted(source_ids), "original_count": len(sources), **extra},
        ),
    )


class ConsolidationEngine:
    """Bounds store growth. Meant to run as an out-of-band sweep."""

    def __init__(
        self,
        storage: SQLiteStorage,
        index: VectorIndex,
        retention_days: Optional[Dict[str, int]] = None,
    ):
        self.storage = storage
        self.index = index
        self.retention_days = dict(retention_days or config.RETENTION_DAYS)

    # === Dedup ===

    def find_duplicates(self, records: Optional[List[MemoryRecord]] = None) -> List[Tuple[str, str, float]]:
        records = records if records is not None else self.storage.query()
        pairs = []
        for i, a in enumerate(records):
            for b in records[i + 1 :]:
                similarity = text_similarity(a.content, b.content)
                if similarity > config.DUPLICATE_THRESHOLD:
                    pairs.append((a.id, b.id, similarity))
        return pairs

    def prune_redundant_memories(self) -> int:
        """Merge near-identical records. Returns the number removed."""
        pruned = 0
        removed = set()
        for first_id, second_id, similarity in self.find_duplicates():
            if first_id in removed or second_id in removed:
                continue
            first, second = self.storage.get(first_id), self.storage.get(second_id)
            if first is None or second is None:
                continue
            survivor = select_better(first, second)
            loser = second if survivor is first else first
            try:
                self._persist_merge(merge_into(survivor, loser), loser)
            except ConsistencyConflict as e:
                logger.warning(f"Skipping merge: {e}")
                continue
            removed.add(loser.id)
            pruned += 1
            logger.debug(f"Merged {loser.id} into {survivor.id} (similarity {similarity:.3f})")
        if pruned:
            logger.info(f"Pruned {pruned} redundant memories")
        return pruned

    def _persist_merge(self, survivor: MemoryRecord, loser: MemoryRecord) -> None:
        """Write the survivor, then drop the loser.

        Raises:
            ConsistencyConflict: the survivor was removed concurrently.
        """
        if not self.storage.update(survivor):
            raise ConsistencyConflict(f"survivor {survivor.id} vanished during merge")
        self.storage.delete(loser.id)
        self.index.remove(loser.id)

    # === Compression ===

    def identify_compression_candidates(self) -> List[List[MemoryRecord]]:
        """Greedy single-pass clusters of old, rarely used, low importance records."""
        cutoff = utc_now() - timedelta(days=config.COMPRESSION_MIN_AGE_DAYS)
        old = [
            m
            for m in self.storage.query(MemoryFilter(until=cutoff))
            if m.access_count < config.COMPRESSION_MAX_ACCESS
            and m.importance < config.COMPRESSION_MAX_IMPORTANCE
            and m.type not in DERIVED_TYPES
        ]
        old.sort(key=lambda m: (compression_rank(m.type), m.created_at))
        clusters = []
        processed = set()
        for memory in old:
            if memory.id in processed:
                continue
            processed.add(memory.id)
            cluster = [memory]
            for other in old:
                if other.id not in processed and are_similar(memory, other):
                    cluster.append(other)
                    processed.add(other.id)
            if len(cluster) >= 2:
                clusters.append(cluster)
        return clusters

    def compress_old_memories(self) -> Tuple[int, int]:
        """Replace each candidate cluster with a SUMMARY record.

        Returns (records compressed, summaries created).
        """
        compressed = 0
        summaries = 0
        for cluster in self.identify_compression_candidates():
            if len(cluster) < 2:
                continue
            summary = build_consolidated_record(
                MemoryType.SUMMARY,
                cluster,
                summarize_memory_cluster(cluster),
                {"compressed": True, "compression_date": utc_now().isoformat()},
            )
            # Summary insert and source deletes share one transaction
            compressed += self.storage.replace_with(summary, [m.id for m in cluster])
            summaries += 1
            for m in cluster:
                self.index.remove(m.id)
            self._index_quietly(summary)
        if summaries:
            logger.info(f"Compressed {compressed} memories into {summaries} summaries")
        return compressed, summaries

    def archive_memories(self, criteria: ArchiveCriteria) -> Optional[str]:
        """Replace every record past the thresholds with one ARCHIVE record.

        Returns the archive id, or None when nothing qualified.
        """
        cutoff = utc_now() - timedelta(days=criteria.age_days)
        qualifying = [
            m
            for m in self.storage.query(MemoryFilter(until=cutoff))
            if m.importance < criteria.importance
            and m.access_count < criteria.access_count
            and m.type != MemoryType.ARCHIVE
        ]
        return self._archive(
            qualifying,
            {
                "age_days": criteria.age_days,
                "importance": criteria.importance,
                "access_count": criteria.access_count,
            },
        )

    def archive_expired(self) -> Optional[str]:
        """Archive low-importance records older than their type's retention period."""
        now = utc_now()
        qualifying = []
        for record in self.storage.query():
            if record.type in DERIVED_TYPES:
                continue
            retention = self.retention_days.get(record.type.value)
            if retention is None or age_days(record.created_at, now) <= retention:
                continue
            if record.importance < config.COMPRESSION_MAX_IMPORTANCE:
                qualifying.append(record)
        return self._archive(qualifying, {"retention_days": dict(self.retention_days)})

    def _archive(self, qualifying: List[MemoryRecord], criteria: Dict[str, object]) -> Optional[str]:
        if not qualifying:
            return None
        archive = build_consolidated_record(
            MemoryType.ARCHIVE,
            qualifying,
            summarize_memory_cluster(qualifying),
            {"archive": True, "archive_date": utc_now().isoformat(), "criteria": criteria},
            importance=0.3,
        )
        removed = self.storage.replace_with(archive, [m.id for m in qualifying])
        for m in qualifying:
            self.index.remove(m.id)
        self._index_quietly(archive)
        logger.info(f"Archived {removed} memories into {archive.id}")
        return archive.id

    def _index_quietly(self, record: MemoryRecord) -> None:
        try:
            self.index.add(record)
        except Exception as e:
            # The next rebuild retries it
            logger.warning(f"Could not index {record.type.value} {record.id}: {e}")

    # === Importance ===

    def update_importance_scores(self) -> int:
        """Recompute importance for every record. Returns the number changed.

        Uses the same type adjustment as ``remember`` so an untouched record
        keeps its score, and never drops below an importance the caller set
        explicitly.
        """
        changed = 0
        for record in self.storage.query():
            neighbours = []
            if record.embedding:
                neighbours = self.index.max_similarity(record.embedding, exclude=record.id)
            updated = type_adjusted(score_record(record, neighbours), record.type.value)
            explicit = record.metadata.extra.get("explicit_importance")
            if explicit is not None:
                updated = max(updated, float(explicit))
            if abs(updated - record.importance) > 1e-6:
                record.importance = updated
                if self.storage.update(record):
                    changed += 1
        return changed

    def get_compression_stats(self) -> Dict[str, float]:
        total = self.storage.count()
        compressed = self.storage.compressed_count()
        return {
            "total_memories": total,
            "compressed_memories": compressed,
            "compression_ratio": compressed / total if total else 0.0,
        }

    # === Sweep ===

    def _run_step(self, report: ConsolidationReport, name: str, fn, default=0):
        try:
            return fn()
        except Exception as e:
            logger.error(f"Consolidation step {name} failed: {e}", exc_info=True)
            report.errors.append(f"{name}: {e}")
            return default

    def optimize(self, graph=None) -> ConsolidationReport:
        """Prune, compress, expire, rescore, sweep the graph, then rebuild the index.

        A failing step is recorded in ``report.errors`` and the sweep moves
        on; nothing an earlier step wrote is undone.
        """
        report = ConsolidationReport()
        report.merged = self._run_step(report, "prune", self.prune_redundant_memories)
        report.compressed, report.summaries_created = self._run_step(
            report, "compress", self.compress_old_memories, (0, 0)
        )
        before = self.storage.count()
        if self._run_step(report, "archive", self.archive_expired, None) is not None:
            report.archived = before - self.storage.count() + 1
        report.importance_updated = self._run_step(report, "importance", self.update_importance_scores)
        if graph is not None:
            report.contradictions = self._run_step(report, "contradictions", graph.resolve_contradictions)
            report.relationships_discovered = self._run_step(
                report, "discovery", graph.discover_relationships
            )
        report.indexed = self._run_step(report, "rebuild", self.index.rebuild)
        logger.info(
            f"Consolidation done: merged={report.merged} compressed={report.compressed} "
            f"archived={report.archived} errors={len(report.errors)}"
        )
        return report

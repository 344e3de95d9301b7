"""
In-process store implementations.

Suitable for single-process use (local tooling, tests). Statistics updates
are serialized with one lock per statistics key; a multi-key update holds
every lock it needs and writes nothing unless every merge succeeds.
"""

import threading
from collections import defaultdict
from contextlib import ExitStack
from typing import Callable, Dict, List, Optional, Sequence, Set

from schemas.quiz import (
    Attempt,
    CatalogEntry,
    CurriculumCoordinate,
    QuestionSet,
    SkillStats,
    SkillStatsKey,
    TopicPerformance,
    normalize_subject,
)
from utils.quiz_stores import (
    DEFAULT_HISTORY_LIMIT,
    AttemptStore,
    QuestionSetStore,
    SkillStatsStore,
    StatsUpdate,
)


class InMemoryQuestionSetStore(QuestionSetStore):
    def __init__(self):
        self._sets: Dict[str, QuestionSet] = {}
        self._lock = threading.Lock()

    def find_by_coordinate(self, coordinate: CurriculumCoordinate) -> List[QuestionSet]:
        with self._lock:
            found = [s for s in self._sets.values() if coordinate.matches(s.coordinate)]
        return sorted(found, key=lambda s: (s.created_at, s.set_id))

    def get(self, set_id: str) -> Optional[QuestionSet]:
        return self._sets.get(set_id)

    def add(self, question_set: QuestionSet) -> QuestionSet:
        with self._lock:
            if question_set.set_id in self._sets:
                raise ValueError(f"set_id {question_set.set_id} already stored")
            self._sets[question_set.set_id] = question_set
        return question_set

    def catalog(self, class_number: int, subject: str) -> List[CatalogEntry]:
        subject = normalize_subject(subject)
        counts: Dict[tuple, int] = defaultdict(int)
        with self._lock:
            for s in self._sets.values():
                if s.coordinate.class_number == class_number and s.coordinate.subject == subject:
                    counts[(s.coordinate.chapter, s.coordinate.topic)] += 1
        return [
            CatalogEntry(chapter=chapter, topic=topic, set_count=count)
            for (chapter, topic), count in sorted(counts.items())
        ]


class InMemoryAttemptStore(AttemptStore):
    def __init__(self):
        self._attempts: List[Attempt] = []
        self._lock = threading.Lock()

    def add(self, attempt: Attempt, commit: bool = True) -> Attempt:
        with self._lock:
            self._attempts.append(attempt)
        return attempt

    def get(self, attempt_id: str) -> Optional[Attempt]:
        with self._lock:
            return next((a for a in self._attempts if a.attempt_id == attempt_id), None)

    def attempted_set_ids(self, student_id: str, coordinate: CurriculumCoordinate) -> Set[str]:
        with self._lock:
            return {
                a.set_id
                for a in self._attempts
                if a.student_id == student_id and coordinate.matches(a.coordinate)
            }

    def list_for_student(
        self,
        student_id: str,
        subject: Optional[str] = None,
        chapter: Optional[str] = None,
        topic: Optional[str] = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> List[Attempt]:
        with self._lock:
            # Reverse insertion order breaks submitted_at ties newest first
            attempts = [a for a in reversed(self._attempts) if a.student_id == student_id]
        if subject:
            attempts = [a for a in attempts if a.coordinate.subject == normalize_subject(subject)]
        if chapter:
            attempts = [a for a in attempts if a.coordinate.chapter == chapter.strip()]
        if topic:
            attempts = [a for a in attempts if a.coordinate.topic == topic.strip()]
        attempts.sort(key=lambda a: a.submitted_at, reverse=True)
        return attempts[:limit]

    def topic_performance(self, student_id: str, subject: str) -> List[TopicPerformance]:
        by_topic: Dict[str, List[Attempt]] = defaultdict(list)
        for attempt in self.list_for_student(student_id, subject=subject, limit=len(self._attempts)):
            by_topic[attempt.coordinate.topic].append(attempt)

        performance = [
            TopicPerformance(
                topic=topic,
                attempts=len(attempts),
                avg_score=sum(a.score_percentage for a in attempts) / len(attempts),
                last_attempt=max(a.submitted_at for a in attempts),
            )
            for topic, attempts in by_topic.items()
        ]
        return sorted(performance, key=lambda p: p.last_attempt, reverse=True)


class InMemorySkillStatsStore(SkillStatsStore):
    def __init__(self):
        self._stats: Dict[SkillStatsKey, SkillStats] = {}
        self._key_locks: Dict[SkillStatsKey, threading.Lock] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _normalize(key: SkillStatsKey) -> SkillStatsKey:
        return SkillStatsKey(key.student_id, normalize_subject(key.subject), key.topic or None)

    def _lock_for(self, key: SkillStatsKey) -> threading.Lock:
        with self._lock:
            return self._key_locks.setdefault(key, threading.Lock())

    def get(self, key: SkillStatsKey) -> Optional[SkillStats]:
        return self._stats.get(self._normalize(key))

    def list_for_student(self, student_id: str) -> List[SkillStats]:
        found = [s for k, s in list(self._stats.items()) if k.student_id == student_id and k.topic is None]
        return sorted(found, key=lambda s: s.subject)

    def list_for_class(self, school_id: str, class_number: int, subject: str) -> List[SkillStats]:
        subject = normalize_subject(subject)
        found = [
            s
            for s in list(self._stats.values())
            if s.topic is None and s.school_id == school_id and s.class_number == class_number and s.subject == subject
        ]
        return sorted(found, key=lambda s: s.student_id)

    def update_many(
        self,
        updates: Sequence[StatsUpdate],
        before_commit: Optional[Callable[[], object]] = None,
    ) -> List[SkillStats]:
        keys = [self._normalize(key) for key, _ in updates]
        with ExitStack() as stack:
            # Locks are always taken in key order
            for key in sorted(keys, key=lambda k: (k.student_id, k.subject, k.topic or "")):
                stack.enter_context(self._lock_for(key))

            merged = []
            for key, (_, merge) in zip(keys, updates):
                current = self._stats.get(key)
                stats = merge(current)
                merged.append(stats.model_copy(update={"version": (current.version if current else 0) + 1}))

            if before_commit is not None:
                before_commit()
            for key, stats in zip(keys, merged):
                self._stats[key] = stats
            return merged

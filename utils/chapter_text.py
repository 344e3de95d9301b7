"""Chapter text lookup backed by the syllabus_chapters table."""

from sqlalchemy.orm import Session

from models import SyllabusChapter
from schemas.quiz import normalize_subject, utc_now
from utils.error_handling import ContentUnavailable, safe_database_operation


class SyllabusChapterTextProvider:
    def __init__(self, db: Session):
        self.db = db

    def _find(self, class_number: int, subject: str, chapter: str):
        return (
            self.db.query(SyllabusChapter)
            .filter(
                SyllabusChapter.class_number == class_number,
                SyllabusChapter.subject == normalize_subject(subject),
                SyllabusChapter.chapter == chapter.strip(),
            )
            .first()
        )

    def get_chapter_text(self, class_number: int, subject: str, chapter: str) -> str:
        record = self._find(class_number, subject, chapter)
        if record is None:
            raise ContentUnavailable(
                f"No syllabus content found for Class {class_number} - {subject} > {chapter}. "
                "Please ensure the syllabus is uploaded."
            )
        return record.content

    def upsert_chapter(self, class_number: int, subject: str, chapter: str, content: str) -> SyllabusChapter:
        record = self._find(class_number, subject, chapter)
        with safe_database_operation(self.db, "upsert syllabus chapter"):
            if record is None:
                record = SyllabusChapter(
                    class_number=class_number,
                    subject=normalize_subject(subject),
                    chapter=chapter.strip(),
                    content=content,
                )
                self.db.add(record)
            else:
                record.content = content
                record.updated_at = utc_now()
            self.db.commit()
        return record

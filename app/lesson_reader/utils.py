"""Utility functions for the Flask application."""
import bcrypt
from functools import wraps
from flask import session, jsonify
from sqlalchemy import func

from app.lesson_reader.models import (
    db,
    User,
    Lesson,
    LessonProgress,
    VocabularyEntry,
    KNOWN_STATUSES,
    VOCABULARY_STATUSES,
    utcnow,
)


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    password_bytes = password.encode('utf-8')
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(password_bytes, salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against a bcrypt hash."""
    password_bytes = password.encode('utf-8')
    hash_bytes = password_hash.encode('utf-8')
    return bcrypt.checkpw(password_bytes, hash_bytes)


def login_required(f):
    """Decorator to require a logged-in user for a JSON route."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if get_current_user() is None:
            return jsonify({'error': 'Not authenticated'}), 401
        return f(*args, **kwargs)
    return decorated_function


def get_current_user():
    """Get the currently logged-in user."""
    user_id = session.get('user_id')
    if user_id:
        return db.session.get(User, user_id)
    return None


def get_user_lesson(user_id: int, lesson_id: int):
    """Return the lesson if it belongs to the user, else None."""
    return Lesson.query.filter_by(id=lesson_id, user_id=user_id).first()


def get_user_entry(user_id: int, entry_id: int):
    """Return the vocabulary entry if it belongs to the user, else None."""
    return VocabularyEntry.query.filter_by(id=entry_id, user_id=user_id).first()


def get_lessons_with_progress(user_id: int):
    """Return (lesson, progress-or-None) pairs, newest lesson first."""
    return db.session.query(Lesson, LessonProgress).outerjoin(
        LessonProgress,
        (LessonProgress.lesson_id == Lesson.id) & (LessonProgress.user_id == user_id)
    ).filter(
        Lesson.user_id == user_id
    ).order_by(Lesson.created_at.desc(), Lesson.id.desc()).all()


def get_or_create_progress(user_id: int, lesson_id: int):
    """Get or create the progress row for a user's lesson."""
    progress = LessonProgress.query.filter_by(user_id=user_id, lesson_id=lesson_id).first()

    if progress is None:
        progress = LessonProgress(user_id=user_id, lesson_id=lesson_id, progress_percentage=0)
        db.session.add(progress)
        db.session.flush()

    return progress


def mark_lesson_opened(user_id: int, lesson_id: int):
    """Flag the lesson as opened and stamp the time."""
    progress = get_or_create_progress(user_id, lesson_id)
    progress.is_opened = True
    progress.last_opened_at = utcnow()
    db.session.commit()
    return progress


def get_known_vocabulary(user_id: int, language: str = None):
    """Entries whose status qualifies them for highlighting."""
    query = VocabularyEntry.query.filter(
        VocabularyEntry.user_id == user_id,
        VocabularyEntry.status.in_(KNOWN_STATUSES)
    )
    if language:
        query = query.filter(VocabularyEntry.language == language)
    return query.order_by(VocabularyEntry.id).all()


def find_duplicate_entry(user_id: int, content: str, language: str, item_type: str):
    """Look for an existing entry with the same content, language and type."""
    return VocabularyEntry.query.filter_by(
        user_id=user_id,
        text_content=content,
        language=language,
        item_type=item_type
    ).first()


def get_vocabulary_stats(user_id: int):
    """Count entries per status."""
    rows = db.session.query(
        VocabularyEntry.status,
        func.count(VocabularyEntry.id)
    ).filter(
        VocabularyEntry.user_id == user_id
    ).group_by(VocabularyEntry.status).all()

    counts = {status: 0 for status in VOCABULARY_STATUSES}
    for status, count in rows:
        if status in counts:
            counts[status] = count

    return {
        'total': sum(count for _, count in rows),
        'new': counts['new'],
        'learning': counts['learning'],
        'known': counts['known'],
    }

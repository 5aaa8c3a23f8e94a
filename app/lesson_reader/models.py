"""SQLAlchemy database models for the lesson reader."""
from datetime import datetime, timezone
import sqlite3

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.engine import Engine

db = SQLAlchemy()

VOCABULARY_STATUSES = ('new', 'learning', 'known')
KNOWN_STATUSES = ('learning', 'known')


@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Configure SQLite connections for better concurrency."""
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA synchronous=NORMAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.execute("PRAGMA busy_timeout=15000;")
        cursor.close()


def utcnow():
    """Get current UTC time."""
    return datetime.now(timezone.utc)


def _isoformat(value):
    return value.isoformat() if value else None


class User(db.Model):
    """Learner account."""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True, index=True)
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(255), nullable=True)
    learning_language = db.Column(db.String(20), default='english', nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    lessons = db.relationship('Lesson', back_populates='user', cascade='all, delete-orphan')
    vocabulary = db.relationship('VocabularyEntry', back_populates='user', cascade='all, delete-orphan')

    def __repr__(self):
        return f'<User {self.email}>'

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'learning_language': self.learning_language,
        }


class Lesson(db.Model):
    """A reading lesson: text plus optional audio and cover image."""
    __tablename__ = 'lessons'

    id = db.Column(db.Integer, primary_key=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    content = db.Column(db.Text, nullable=False)
    language = db.Column(db.String(20), nullable=False)
    audio_url = db.Column(db.String(500), nullable=True)
    audio_sync_data = db.Column(db.JSON, nullable=True)  # [{word, start_time, end_time, word_index}, ...]
    cover_image_url = db.Column(db.String(500), nullable=True)
    difficulty_level = db.Column(db.String(20), nullable=True)
    ai_generated = db.Column(db.Boolean, default=False, nullable=False)
    ai_topic = db.Column(db.String(255), nullable=True)
    ai_level = db.Column(db.String(20), nullable=True)  # superseded by difficulty_level
    ai_model = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    user = db.relationship('User', back_populates='lessons')
    progress = db.relationship('LessonProgress', back_populates='lesson', cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Lesson id={self.id} title={self.title!r}>'

    def to_dict(self, progress=None, include_progress=False):
        data = {
            'id': self.id,
            'title': self.title,
            'content': self.content,
            'language': self.language,
            'audio_url': self.audio_url,
            'audio_sync_data': self.audio_sync_data,
            'cover_image_url': self.cover_image_url,
            'difficulty_level': self.difficulty_level,
            'user_id': self.user_id,
            'ai_generated': self.ai_generated,
            'ai_topic': self.ai_topic,
            'ai_level': self.ai_level,
            'ai_model': self.ai_model,
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at),
        }
        if include_progress:
            if progress is not None:
                data.update(progress.to_summary())
            else:
                data.update({'is_opened': False, 'last_opened_at': None, 'progress_percentage': 0})
        return data


class LessonProgress(db.Model):
    """Per-user reading progress for a lesson."""
    __tablename__ = 'lesson_progress'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'lesson_id', name='uq_user_lesson_progress'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    lesson_id = db.Column(db.Integer, db.ForeignKey('lessons.id', ondelete='CASCADE'), nullable=False)
    is_opened = db.Column(db.Boolean, default=False, nullable=False)
    last_opened_at = db.Column(db.DateTime(timezone=True), nullable=True)
    progress_percentage = db.Column(db.Integer, default=0, nullable=False)

    lesson = db.relationship('Lesson', back_populates='progress')

    def __repr__(self):
        return f'<LessonProgress user={self.user_id} lesson={self.lesson_id}>'

    def to_summary(self):
        return {
            'is_opened': bool(self.is_opened),
            'last_opened_at': _isoformat(self.last_opened_at),
            'progress_percentage': self.progress_percentage or 0,
        }


class VocabularyEntry(db.Model):
    """A word or sentence saved by a learner, with its acquisition status."""
    __tablename__ = 'vocabulary_entries'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    lesson_id = db.Column(db.Integer, db.ForeignKey('lessons.id', ondelete='SET NULL'), nullable=True)
    text_content = db.Column(db.Text, nullable=False)
    language = db.Column(db.String(20), nullable=False, index=True)
    status = db.Column(db.String(20), default='new', nullable=False, index=True)
    item_type = db.Column(db.String(20), default='word', nullable=False)
    translation = db.Column(db.Text, nullable=True)
    definition = db.Column(db.Text, nullable=True)
    start_char_index = db.Column(db.Integer, nullable=True)
    end_char_index = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user = db.relationship('User', back_populates='vocabulary')

    def __repr__(self):
        return f'<VocabularyEntry user={self.user_id} {self.item_type}={self.text_content!r}>'

    def to_dict(self):
        return {
            'id': self.id,
            'text_content': self.text_content,
            'word': self.text_content,
            'language': self.language,
            'status': self.status,
            'item_type': self.item_type,
            'translation': self.translation,
            'definition': self.definition,
            'user_id': self.user_id,
            'lesson_id': self.lesson_id,
            'start_char_index': self.start_char_index,
            'end_char_index': self.end_char_index,
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at),
        }

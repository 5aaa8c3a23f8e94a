"""
Lesson Reader - Flask Application
JSON API for lessons, vocabulary tracking and in-text vocabulary highlighting.
"""
import os
from typing import Optional

import requests
from flask import Flask, request, session, jsonify, current_app, send_from_directory
from flask_cors import CORS
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import RequestEntityTooLarge

from app.lesson_reader.config import config
from app.lesson_reader.models import db, User, Lesson, VocabularyEntry, VOCABULARY_STATUSES
from app.lesson_reader.utils import (
    hash_password,
    verify_password,
    login_required,
    get_current_user,
    get_user_lesson,
    get_user_entry,
    get_lessons_with_progress,
    get_or_create_progress,
    mark_lesson_opened,
    get_known_vocabulary,
    find_duplicate_entry,
    get_vocabulary_stats,
)
from app.lesson_reader.services.cover_image import generate_lesson_cover
from app.lesson_reader.services.gemini_client import get_gemini_client
from app.lesson_reader.services.lesson_generator import (
    LessonGenerationError,
    generate_lesson_text,
    normalize_level,
)
from app.lesson_reader.services.media_storage import (
    AUDIO_DIR,
    media_root,
    public_url,
    save_upload,
)
from app.lesson_reader.services.selection_resolver import (
    Anchor,
    build_fragments,
    classify_selection,
    fragments_from_json,
    node_at_path,
    render_fragments,
    resolve_double_click_word,
    resolve_selection,
)
from app.lesson_reader.services.translation_service import TranslationError, translate_text
from app.lesson_reader.services.tts_service import TTSError, get_tts_service
from app.lesson_reader.services.vocabulary_highlighting import ITEM_TYPES, VocabularyMatcher


# Initialize Flask app
app = Flask(__name__)
app.config.from_object(config[os.getenv('FLASK_ENV', 'development')])

# Initialize extensions
db.init_app(app)
CORS(app, resources={r"/api/*": {"origins": app.config['CORS_ALLOWED_ORIGINS']}}, supports_credentials=True)

USER_API_KEY_HEADER = 'X-Gemini-Api-Key'
MIN_PASSWORD_LENGTH = 8


def _payload() -> dict:
    """JSON body, or form fields for multipart requests."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict() if request.form else {}


def _request_client():
    """Gemini client, honoring a key supplied by the learner."""
    return get_gemini_client(request.headers.get(USER_API_KEY_HEADER) or None)


def _is_supported_language(language: Optional[str]) -> bool:
    return language in current_app.config['SUPPORTED_LANGUAGES']


def _optional_int(value):
    """Parse an optional integer field; raises ValueError on junk."""
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise ValueError('boolean is not an integer')
    return int(value)


def _lesson_matcher(user_id: int, language: str) -> VocabularyMatcher:
    """A fresh matcher over the user's known vocabulary for one lesson view."""
    entries = get_known_vocabulary(user_id, language)
    return VocabularyMatcher(entry.to_dict() for entry in entries)


def _anchor_from_json(root, data) -> Optional[Anchor]:
    if not isinstance(data, dict):
        return None
    path = data.get('path', [])
    if isinstance(path, str):
        try:
            path = [int(part) for part in path.split('.') if part != '']
        except ValueError:
            return None
    if not isinstance(path, list):
        return None
    node = node_at_path(root, path)
    offset = data.get('offset')
    if node is None or not isinstance(offset, int) or isinstance(offset, bool):
        return None
    return Anchor(node, offset)


# ============================================================================
# AUTHENTICATION ROUTES
# ============================================================================

@app.route('/api/auth/register', methods=['POST'])
def register():
    """Create an account and log the user in."""
    payload = _payload()
    email = (payload.get('email') or '').strip().lower()
    password = payload.get('password') or ''
    name = (payload.get('name') or '').strip() or None
    learning_language = payload.get('learning_language') or 'english'

    if not email or not password:
        return jsonify({'error': 'Email and password are required.'}), 400
    if len(password) < MIN_PASSWORD_LENGTH:
        return jsonify({'error': f'Password must be at least {MIN_PASSWORD_LENGTH} characters.'}), 400
    if not _is_supported_language(learning_language):
        return jsonify({'error': 'Learning language must be english or french.'}), 400

    if User.query.filter_by(email=email).first():
        return jsonify({'error': 'Email already registered.'}), 409

    user = User(
        email=email,
        password_hash=hash_password(password),
        name=name,
        learning_language=learning_language,
    )
    db.session.add(user)
    db.session.commit()

    session['user_id'] = user.id
    session.permanent = True
    current_app.logger.info("Registered user %s", user.id)
    return jsonify({'message': 'User registered successfully', 'user': user.to_dict()}), 201


@app.route('/api/auth/login', methods=['POST'])
def login():
    """Log in with email and password."""
    payload = _payload()
    email = (payload.get('email') or '').strip().lower()
    password = payload.get('password') or ''

    user = User.query.filter_by(email=email).first() if email else None
    if not user or not verify_password(password, user.password_hash):
        return jsonify({'error': 'Invalid email or password.'}), 400

    session['user_id'] = user.id
    session.permanent = True
    return jsonify({'user': user.to_dict()})


@app.route('/api/auth/logout', methods=['POST'])
def logout():
    """Log out the user."""
    session.clear()
    return jsonify({'message': 'Logged out successfully'})


@app.route('/api/auth/me')
@login_required
def current_user_profile():
    return jsonify({'user': get_current_user().to_dict()})


# ============================================================================
# LESSON ROUTES
# ============================================================================

@app.route('/api/lessons')
@login_required
def list_lessons():
    """List lessons with progress; ?status=new|opened filters by opened state."""
    user = get_current_user()
    status = request.args.get('status')

    lessons = [
        lesson.to_dict(progress, include_progress=True)
        for lesson, progress in get_lessons_with_progress(user.id)
    ]

    if status == 'new':
        lessons = [lesson for lesson in lessons if not lesson['is_opened']]
    elif status == 'opened':
        lessons = [lesson for lesson in lessons if lesson['is_opened']]
        # ISO timestamps sort chronologically; never-opened rows go last
        lessons.sort(key=lambda lesson: lesson['last_opened_at'] or '', reverse=True)

    return jsonify({'lessons': lessons})


@app.route('/api/lessons/<int:lesson_id>')
@login_required
def get_lesson(lesson_id):
    """Fetch a lesson and mark it as opened."""
    user = get_current_user()
    lesson = get_user_lesson(user.id, lesson_id)
    if lesson is None:
        return jsonify({'error': 'Lesson not found'}), 404

    try:
        mark_lesson_opened(user.id, lesson.id)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error("Error updating lesson progress for %s: %s", lesson.id, exc)

    return jsonify({'lesson': lesson.to_dict()})


@app.route('/api/lessons', methods=['POST'])
@login_required
def create_lesson():
    """Create a lesson from text, with an optional uploaded audio file."""
    user = get_current_user()
    payload = _payload()
    title = (payload.get('title') or '').strip()
    content = payload.get('content') or ''
    language = payload.get('language')

    if not title or not content.strip():
        return jsonify({'error': 'Title and content are required'}), 400
    if not _is_supported_language(language):
        return jsonify({'error': 'Valid language (english or french) is required'}), 400

    audio_url = None
    audio_file = request.files.get('audio_file')
    if audio_file is not None and audio_file.filename:
        stored = save_upload(audio_file, AUDIO_DIR, user.id)
        if stored:
            audio_url = public_url(stored)
        else:
            current_app.logger.warning("Audio upload failed for lesson %r", title)

    cover = generate_lesson_cover(title, language, user.id, content=content)

    lesson = Lesson(
        user_id=user.id,
        title=title,
        content=content,
        language=language,
        audio_url=audio_url,
        cover_image_url=public_url(cover),
    )
    db.session.add(lesson)
    db.session.commit()
    current_app.logger.info("Created lesson %s for user %s", lesson.id, user.id)
    return jsonify({'lesson': lesson.to_dict()}), 201


@app.route('/api/lessons/<int:lesson_id>/sync', methods=['PUT'])
@login_required
def update_lesson_sync(lesson_id):
    """Replace the lesson's audio sync data."""
    user = get_current_user()
    lesson = get_user_lesson(user.id, lesson_id)
    if lesson is None:
        return jsonify({'error': 'Lesson not found'}), 404

    sync_data = _payload().get('audio_sync_data')
    if not isinstance(sync_data, list):
        return jsonify({'error': 'audio_sync_data must be a list'}), 400

    lesson.audio_sync_data = sync_data
    db.session.commit()
    return jsonify({'lesson': lesson.to_dict()})


@app.route('/api/lessons/<int:lesson_id>/progress', methods=['PUT'])
@login_required
def update_lesson_progress(lesson_id):
    """Record how far the learner has read."""
    user = get_current_user()
    lesson = get_user_lesson(user.id, lesson_id)
    if lesson is None:
        return jsonify({'error': 'Lesson not found'}), 404

    try:
        percentage = _optional_int(_payload().get('progress_percentage'))
    except (TypeError, ValueError):
        return jsonify({'error': 'Invalid progress_percentage value'}), 400
    if percentage is None:
        return jsonify({'error': 'Missing progress_percentage'}), 400

    progress = get_or_create_progress(user.id, lesson.id)
    progress.progress_percentage = max(0, min(percentage, 100))
    db.session.commit()
    return jsonify({'progress': progress.to_summary()})


@app.route('/api/lessons/<int:lesson_id>', methods=['DELETE'])
@login_required
def delete_lesson(lesson_id):
    user = get_current_user()
    lesson = get_user_lesson(user.id, lesson_id)
    if lesson is None:
        return jsonify({'error': 'Lesson not found'}), 404

    db.session.delete(lesson)
    db.session.commit()
    return jsonify({'message': 'Lesson deleted successfully'})


# ============================================================================
# AI LESSON GENERATION ROUTES
# ============================================================================

@app.route('/api/lessons/ai/generate-text', methods=['POST'])
@login_required
def ai_generate_text():
    """Generate lesson text without saving a lesson."""
    payload = _payload()
    language = payload.get('language')
    if not _is_supported_language(language):
        return jsonify({'error': 'Valid language (english or french) is required'}), 400

    try:
        result = generate_lesson_text(
            language,
            topic=payload.get('topic') or None,
            level=payload.get('level'),
            client=_request_client(),
        )
    except (LessonGenerationError, requests.exceptions.RequestException) as exc:
        current_app.logger.error("AI text generation error: %s", exc)
        return jsonify({'error': str(exc) or 'Failed to generate text with AI'}), 500

    return jsonify(result)


@app.route('/api/lessons/ai/generate-lesson', methods=['POST'])
@login_required
def ai_generate_lesson():
    """Generate text, audio and cover, then save them as a lesson."""
    user = get_current_user()
    payload = _payload()
    language = payload.get('language')
    if not _is_supported_language(language):
        return jsonify({'error': 'Valid language (english or french) is required'}), 400

    level = normalize_level(payload.get('level'))
    client = _request_client()

    try:
        text_result = generate_lesson_text(language, topic=payload.get('topic') or None, level=level, client=client)
    except (LessonGenerationError, requests.exceptions.RequestException) as exc:
        current_app.logger.error("AI lesson generation error: %s", exc)
        return jsonify({'error': str(exc) or 'Failed to generate lesson with AI'}), 500

    try:
        audio = get_tts_service().generate_audio(text_result['text'], language, user.id, filename_prefix='ai-generated')
    except TTSError as exc:
        current_app.logger.error("AI lesson audio error: %s", exc)
        return jsonify({'error': 'Failed to generate audio for the lesson'}), 500

    topic = text_result['topic']
    title = (payload.get('title') or '').strip() or f"AI Generated - {topic or 'General'} ({level})"
    cover = generate_lesson_cover(title, language, user.id, content=text_result['text'], topic=topic)

    lesson = Lesson(
        user_id=user.id,
        title=title,
        content=text_result['text'],
        language=language,
        audio_url=public_url(audio.relative_path),
        audio_sync_data=audio.sync_data,
        cover_image_url=public_url(cover),
        difficulty_level=level,
        ai_generated=True,
        ai_topic=topic,
        ai_level=level,
        ai_model=client.model,
    )
    db.session.add(lesson)
    db.session.commit()
    current_app.logger.info("Generated AI lesson %s for user %s", lesson.id, user.id)

    return jsonify({
        'lesson': lesson.to_dict(),
        'generationData': {'topic': topic, 'level': level},
    }), 201


@app.route('/api/lessons/ai/generate-audio', methods=['POST'])
@login_required
def ai_generate_audio():
    """Synthesize speech for arbitrary lesson text."""
    user = get_current_user()
    payload = _payload()
    text = payload.get('text') or ''
    language = payload.get('language')
    if not text.strip() or not _is_supported_language(language):
        return jsonify({'error': 'Text and valid language (english or french) are required'}), 400

    try:
        audio = get_tts_service().generate_audio(text, language, user.id, filename_prefix='ai-generated')
    except TTSError as exc:
        current_app.logger.error("AI audio generation error: %s", exc)
        return jsonify({'error': 'Failed to generate audio with AI'}), 500

    return jsonify({'audioUrl': public_url(audio.relative_path), 'fileName': audio.relative_path})


# ============================================================================
# READING ROUTES (highlighting, selection, lookup)
# ============================================================================

@app.route('/api/lessons/<int:lesson_id>/highlights')
@login_required
def lesson_highlights(lesson_id):
    """Known-vocabulary spans for the lesson plus the rendered fragment markup."""
    user = get_current_user()
    lesson = get_user_lesson(user.id, lesson_id)
    if lesson is None:
        return jsonify({'error': 'Lesson not found'}), 404

    spans = _lesson_matcher(user.id, lesson.language).find_matches(lesson.content)
    fragments = build_fragments(lesson.content, spans)
    return jsonify({
        'matches': [span.to_dict() for span in spans],
        'html': str(render_fragments(fragments)),
    })


@app.route('/api/lessons/<int:lesson_id>/selection', methods=['POST'])
@login_required
def lesson_selection(lesson_id):
    """Turn a selection in the rendered lesson into a proposed vocabulary item.

    Anchors are ``{"path": [...], "offset": n}`` into the fragment tree. The
    tree is the one rendered from the current highlights unless the client
    sends its own ``fragments``.
    """
    user = get_current_user()
    lesson = get_user_lesson(user.id, lesson_id)
    if lesson is None:
        return jsonify({'error': 'Lesson not found'}), 404

    payload = _payload()
    if payload.get('fragments') is not None:
        try:
            root = fragments_from_json(payload['fragments'])
        except ValueError as exc:
            current_app.logger.debug("Ignoring malformed fragments: %s", exc)
            return jsonify({'selection': None, 'proposal': None})
    else:
        spans = _lesson_matcher(user.id, lesson.language).find_matches(lesson.content)
        root = build_fragments(lesson.content, spans)

    selection = resolve_selection(
        root,
        _anchor_from_json(root, payload.get('start')),
        _anchor_from_json(root, payload.get('end')),
    )
    if selection is None:
        return jsonify({'selection': None, 'proposal': None})

    return jsonify({
        'selection': selection.to_dict(),
        'proposal': {
            'text_content': selection.text,
            'item_type': selection.kind,
            'language': lesson.language,
            'lesson_id': lesson.id,
            'start_char_index': selection.start,
            'end_char_index': selection.end,
            'status': 'new',
        },
    })


@app.route('/api/lessons/<int:lesson_id>/lookup', methods=['POST'])
@login_required
def lesson_lookup(lesson_id):
    """Double-click shortcut: translate a single word without offsets."""
    user = get_current_user()
    lesson = get_user_lesson(user.id, lesson_id)
    if lesson is None:
        return jsonify({'error': 'Lesson not found'}), 404

    word = resolve_double_click_word(_payload().get('text'))
    if word is None:
        return jsonify({'word': None, 'translation': None, 'known': False})

    matcher = _lesson_matcher(user.id, lesson.language)
    translation = matcher.get_translation(word)
    known = any(item.content.lower() == word.lower() for item in matcher.vocabulary)
    if translation is None:
        try:
            translation = translate_text(
                word,
                lesson.language,
                current_app.config['TRANSLATION_TARGET_LANGUAGE'],
                client=_request_client(),
            )['translatedText']
        except (TranslationError, requests.exceptions.RequestException) as exc:
            current_app.logger.warning("Lookup translation failed for %r: %s", word, exc)

    return jsonify({'word': word, 'translation': translation, 'known': known})


# ============================================================================
# VOCABULARY ROUTES
# ============================================================================

@app.route('/api/vocabulary')
@login_required
def list_vocabulary():
    user = get_current_user()
    query = VocabularyEntry.query.filter_by(user_id=user.id)

    status = request.args.get('status')
    if status:
        query = query.filter_by(status=status)
    language = request.args.get('language')
    if language:
        query = query.filter_by(language=language)

    entries = query.order_by(VocabularyEntry.created_at.desc(), VocabularyEntry.id.desc()).all()
    return jsonify({'words': [entry.to_dict() for entry in entries]})


@app.route('/api/vocabulary/known')
@login_required
def known_vocabulary():
    """Vocabulary eligible for highlighting (status learning or known)."""
    user = get_current_user()
    entries = get_known_vocabulary(user.id, request.args.get('language') or None)
    return jsonify({'words': [
        {
            'text_content': entry.text_content,
            'translation': entry.translation,
            'item_type': entry.item_type,
        }
        for entry in entries
    ]})


@app.route('/api/vocabulary', methods=['POST'])
@login_required
def create_vocabulary_entry():
    """Save a word or sentence, auto-translating it when no translation is given."""
    user = get_current_user()
    payload = _payload()

    content = payload.get('text_content') or payload.get('word') or ''
    content = content.strip() if isinstance(content, str) else ''
    if not content:
        return jsonify({'error': 'text_content or word is required'}), 400

    language = payload.get('language') or user.learning_language
    item_type = payload.get('item_type') or classify_selection(content)
    status = payload.get('status') or 'new'
    if item_type not in ITEM_TYPES:
        return jsonify({'error': 'item_type must be word or sentence'}), 400
    if status not in VOCABULARY_STATUSES:
        return jsonify({'error': 'Invalid status'}), 400

    try:
        lesson_id = _optional_int(payload.get('lesson_id'))
        start_char_index = _optional_int(payload.get('start_char_index'))
        end_char_index = _optional_int(payload.get('end_char_index'))
    except (TypeError, ValueError):
        return jsonify({'error': 'lesson_id and character indices must be integers'}), 400

    if lesson_id is not None and get_user_lesson(user.id, lesson_id) is None:
        return jsonify({'error': 'Lesson not found'}), 404

    if item_type == 'word':
        content = content.lower()

    if find_duplicate_entry(user.id, content, language, item_type):
        item_name = 'Sentence' if item_type == 'sentence' else 'Word'
        return jsonify({'error': f'{item_name} already exists in vocabulary'}), 409

    translation = payload.get('translation') or None
    if not translation and _is_supported_language(language):
        try:
            translation = translate_text(
                content,
                language,
                current_app.config['TRANSLATION_TARGET_LANGUAGE'],
                client=_request_client(),
            )['translatedText']
        except (TranslationError, requests.exceptions.RequestException) as exc:
            current_app.logger.warning("Failed to auto-translate vocabulary item %r: %s", content[:80], exc)

    entry = VocabularyEntry(
        user_id=user.id,
        lesson_id=lesson_id,
        text_content=content,
        language=language,
        status=status,
        item_type=item_type,
        translation=translation,
        definition=payload.get('definition') or None,
        start_char_index=start_char_index,
        end_char_index=end_char_index,
    )
    db.session.add(entry)
    db.session.commit()
    return jsonify({'word': entry.to_dict()}), 201


@app.route('/api/vocabulary/<int:entry_id>/status', methods=['PUT'])
@login_required
def update_vocabulary_status(entry_id):
    user = get_current_user()
    entry = get_user_entry(user.id, entry_id)
    if entry is None:
        return jsonify({'error': 'Word not found'}), 404

    status = _payload().get('status')
    if status not in VOCABULARY_STATUSES:
        return jsonify({'error': 'Invalid status'}), 400

    entry.status = status
    db.session.commit()
    return jsonify({'word': entry.to_dict()})


@app.route('/api/vocabulary/<int:entry_id>', methods=['PUT'])
@login_required
def update_vocabulary_entry(entry_id):
    """Update translation, definition or status."""
    user = get_current_user()
    entry = get_user_entry(user.id, entry_id)
    if entry is None:
        return jsonify({'error': 'Word not found'}), 404

    payload = _payload()
    updates = {field: payload[field] for field in ('translation', 'definition', 'status') if field in payload}
    if not updates:
        return jsonify({'error': 'No valid fields to update'}), 400
    if 'status' in updates and updates['status'] not in VOCABULARY_STATUSES:
        return jsonify({'error': 'Invalid status'}), 400

    for field, value in updates.items():
        setattr(entry, field, value)
    db.session.commit()
    return jsonify({'word': entry.to_dict()})


@app.route('/api/vocabulary/stats')
@login_required
def vocabulary_stats():
    user = get_current_user()
    return jsonify({'stats': get_vocabulary_stats(user.id)})


@app.route('/api/vocabulary/<int:entry_id>', methods=['DELETE'])
@login_required
def delete_vocabulary_entry(entry_id):
    user = get_current_user()
    entry = get_user_entry(user.id, entry_id)
    if entry is None:
        return jsonify({'error': 'Word not found'}), 404

    db.session.delete(entry)
    db.session.commit()
    return jsonify({'message': 'Word deleted successfully'})


@app.route('/api/vocabulary/translate', methods=['POST'])
@login_required
def translate_vocabulary():
    """Translate arbitrary text from a lesson language."""
    payload = _payload()
    text = (payload.get('text') or '').strip()
    source_language = payload.get('sourceLanguage')

    if not text:
        return jsonify({'error': 'Text to translate is required'}), 400
    if not _is_supported_language(source_language):
        return jsonify({'error': 'Valid source language (english or french) is required'}), 400

    client = _request_client()
    if not client.is_configured:
        return jsonify({
            'error': 'Translation service is not available',
            'message': 'Gemini translation service is not configured',
        }), 503

    try:
        result = translate_text(text, source_language, current_app.config['TRANSLATION_TARGET_LANGUAGE'], client=client)
    except (TranslationError, requests.exceptions.RequestException) as exc:
        current_app.logger.error("Translation service error: %s", exc)
        return jsonify({
            'error': str(exc) or 'Translation temporarily unavailable',
            'message': 'Please try again later or add translation manually',
            'translation': None,
        }), 500

    return jsonify({
        'translation': result['translatedText'],
        'originalText': result['sourceText'],
        'sourceLanguage': result['sourceLanguage'],
        'targetLanguage': result['targetLanguage'],
    })


# ============================================================================
# MEDIA
# ============================================================================

@app.route('/media/<path:filename>')
def media_file(filename):
    return send_from_directory(media_root(), filename)


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.errorhandler(404)
def not_found(error):
    """404 error handler."""
    return jsonify({'error': 'Not found'}), 404


@app.errorhandler(RequestEntityTooLarge)
def too_large(error):
    return jsonify({'error': 'Uploaded file is too large'}), 413


@app.errorhandler(500)
def internal_error(error):
    """500 error handler."""
    db.session.rollback()
    return jsonify({'error': 'Internal server error'}), 500


# ============================================================================
# INITIALIZATION
# ============================================================================

def init_database():
    """Create tables if they do not exist."""
    with app.app_context():
        db.create_all()
        app.logger.info("[DATABASE] Initialized successfully")


if __name__ == '__main__':
    init_database()
    app.run(host='0.0.0.0', port=int(os.getenv('PORT', 5000)), debug=app.config.get('DEBUG', False))

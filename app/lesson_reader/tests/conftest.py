import os

import pytest

os.environ['FLASK_ENV'] = 'testing'

from app.lesson_reader.app import app as lesson_app  # noqa: E402
from app.lesson_reader.models import db  # noqa: E402


@pytest.fixture
def application(tmp_path, monkeypatch):
    # No server key: Gemini-backed features stay unconfigured unless a test patches them
    monkeypatch.delenv('GEMINI_API_KEY', raising=False)
    lesson_app.config.update(MEDIA_ROOT=str(tmp_path / 'media'))
    with lesson_app.app_context():
        db.create_all()
        yield lesson_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(application):
    return application.test_client()


def register(client, email='learner@example.com', password='correct-horse', language='french'):
    return client.post('/api/auth/register', json={
        'email': email,
        'password': password,
        'name': 'Learner',
        'learning_language': language,
    })


@pytest.fixture
def auth_client(client):
    response = register(client)
    assert response.status_code == 201
    return client


@pytest.fixture
def make_lesson(auth_client):
    def _make(content='Bonjour le monde', title='Salut', language='french'):
        response = auth_client.post('/api/lessons', json={
            'title': title,
            'content': content,
            'language': language,
        })
        assert response.status_code == 201
        return response.get_json()['lesson']
    return _make


@pytest.fixture
def add_vocabulary(auth_client):
    def _add(text, translation='', item_type=None, status='known', language='french'):
        payload = {
            'text_content': text,
            'translation': translation,
            'language': language,
            'status': status,
        }
        if item_type:
            payload['item_type'] = item_type
        response = auth_client.post('/api/vocabulary', json=payload)
        assert response.status_code == 201, response.get_json()
        return response.get_json()['word']
    return _add

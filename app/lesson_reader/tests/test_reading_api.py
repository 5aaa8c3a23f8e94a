from app.lesson_reader import app as app_module


def test_highlights_use_known_vocabulary_only(auth_client, make_lesson, add_vocabulary):
    lesson = make_lesson(content='Le chat noir dort. Un chat!')
    add_vocabulary('le chat noir', 'o gato preto', item_type='sentence', status='learning')
    add_vocabulary('chat', 'gato', status='known')
    add_vocabulary('dort', 'dorme', status='new')
    add_vocabulary('chat', 'cat', status='known', language='english')

    body = auth_client.get(f"/api/lessons/{lesson['id']}/highlights").get_json()

    assert body['matches'] == [
        {'text': 'Le chat noir', 'translation': 'o gato preto', 'start': 0, 'end': 12, 'type': 'sentence'},
        {'text': 'chat', 'translation': 'gato', 'start': 22, 'end': 26, 'type': 'word'},
    ]
    assert 'data-translation="gato"' in body['html']
    assert 'dorme' not in body['html']


def test_highlights_without_vocabulary(auth_client, make_lesson):
    lesson = make_lesson(content='a < b')

    body = auth_client.get(f"/api/lessons/{lesson['id']}/highlights").get_json()

    assert body['matches'] == []
    assert '&lt;' in body['html']


def test_selection_across_rendered_words(auth_client, make_lesson):
    lesson = make_lesson(content='Bonjour le monde')

    response = auth_client.post(f"/api/lessons/{lesson['id']}/selection", json={
        'start': {'path': [2, 0], 'offset': 0},
        'end': {'path': [4, 0], 'offset': 5},
    })

    body = response.get_json()
    assert body['selection'] == {'text': 'le monde', 'start': 8, 'end': 16, 'item_type': 'sentence'}
    assert body['proposal']['lesson_id'] == lesson['id']
    assert body['proposal']['language'] == 'french'
    assert body['proposal']['status'] == 'new'


def test_selection_inside_highlight(auth_client, make_lesson, add_vocabulary):
    lesson = make_lesson(content='Bonjour le monde')
    add_vocabulary('le monde', 'o mundo', item_type='sentence')

    response = auth_client.post(f"/api/lessons/{lesson['id']}/selection", json={
        'start': {'path': '2.0', 'offset': 3},
        'end': {'path': '2.0', 'offset': 8},
    })

    assert response.get_json()['selection'] == {'text': 'monde', 'start': 11, 'end': 16, 'item_type': 'word'}


def test_selection_with_client_fragments(auth_client, make_lesson):
    lesson = make_lesson(content='abc def ghi')

    response = auth_client.post(f"/api/lessons/{lesson['id']}/selection", json={
        'fragments': ['abc ', {'tag': 'mark', 'children': ['def']}, ' ghi'],
        'start': {'path': [2], 'offset': 1},
        'end': {'path': [2], 'offset': 4},
    })

    assert response.get_json()['selection'] == {'text': 'ghi', 'start': 8, 'end': 11, 'item_type': 'word'}


def test_unresolvable_selection_is_null(auth_client, make_lesson):
    lesson = make_lesson(content='Bonjour le monde')
    url = f"/api/lessons/{lesson['id']}/selection"

    for payload in (
        {},
        {'start': {'path': [99], 'offset': 0}, 'end': {'path': [0, 0], 'offset': 2}},
        {'start': {'path': [1, 0], 'offset': 0}, 'end': {'path': [1, 0], 'offset': 1}},
        {'start': {'path': [0, 0], 'offset': 'x'}, 'end': {'path': [0, 0], 'offset': 2}},
        {'fragments': 42, 'start': {'path': [0], 'offset': 0}, 'end': {'path': [0], 'offset': 1}},
    ):
        response = auth_client.post(url, json=payload)
        assert response.status_code == 200
        assert response.get_json() == {'selection': None, 'proposal': None}


def test_lookup_known_word(auth_client, make_lesson, add_vocabulary):
    lesson = make_lesson(content='Le Chat dort')
    add_vocabulary('chat', 'gato', status='learning')

    body = auth_client.post(f"/api/lessons/{lesson['id']}/lookup", json={'text': ' Chat '}).get_json()

    assert body == {'word': 'Chat', 'translation': 'gato', 'known': True}


def test_lookup_unknown_word_translates(auth_client, make_lesson, monkeypatch):
    lesson = make_lesson(content='Le chat dort')
    monkeypatch.setattr(app_module, 'translate_text', lambda text, source, target, client=None: {
        'translatedText': 'dorme', 'sourceText': text, 'sourceLanguage': source, 'targetLanguage': target,
    })

    body = auth_client.post(f"/api/lessons/{lesson['id']}/lookup", json={'text': 'dort'}).get_json()

    assert body == {'word': 'dort', 'translation': 'dorme', 'known': False}


def test_lookup_without_translation_service(auth_client, make_lesson):
    lesson = make_lesson(content='Le chat dort')
    url = f"/api/lessons/{lesson['id']}/lookup"

    assert auth_client.post(url, json={'text': 'dort'}).get_json() == {
        'word': 'dort', 'translation': None, 'known': False,
    }
    assert auth_client.post(url, json={'text': 'le chat'}).get_json() == {
        'word': None, 'translation': None, 'known': False,
    }

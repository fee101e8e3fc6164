"""Tests for the Flask web interface."""

from io import BytesIO

import pytest

from conftest import FailingSummarizer
from gradebridge.config import Settings
from gradebridge.web import create_app


@pytest.fixture
def client(fake_summarizer):
    app = create_app(settings=Settings(), summarizer=fake_summarizer)
    app.config['TESTING'] = True
    return app.test_client()


@pytest.fixture
def payload(source_csv, target_csv):
    return {'source_csv': source_csv, 'target_csv': target_csv}


def test_index(client):
    response = client.get('/')
    assert response.status_code == 200
    assert b'canvas_import_ready.csv' in response.data


def test_parse(client, payload):
    data = client.post('/api/parse', json=payload).get_json()
    assert data['source']['assignment_columns'] == ['Quiz 1 (1234)', 'Homework 2 (20 pts)']
    assert data['source']['points_possible']['Homework 2 (20 pts)'] == '20'
    assert data['target']['rows'] == 3
    assert data['can_map'] is True


def test_parse_empty_file_is_not_an_error(client, source_csv):
    response = client.post('/api/parse', json={'source_csv': source_csv, 'target_csv': ''})
    assert response.status_code == 200
    data = response.get_json()
    assert data['target']['empty'] is True
    assert data['can_map'] is False


def test_missing_file_is_bad_request(client, source_csv):
    response = client.post('/api/parse', json={'source_csv': source_csv})
    assert response.status_code == 400
    assert 'target' in response.get_json()['error']


def test_propose(client, payload):
    data = client.post('/api/propose', json=payload).get_json()
    assert data['mappings'] == [
        {'source': 'Quiz 1 (1234)', 'target': 'Quiz 1 (1234)', 'points': '15', 'new': False},
        {'source': 'Homework 2 (20 pts)', 'target': 'Homework 2 (20 pts)', 'points': '20', 'new': True},
    ]
    assert data['can_proceed'] is True


def test_preview(client, payload):
    data = client.post('/api/preview', json=payload).get_json()
    assert (data['matched'], data['total']) == (2, 3)
    assert [row['matched'] for row in data['rows']] == [True, True, False]
    assert data['rows'][2]['values']['Homework 2 (20 pts)'] == ''
    assert data['stats']['median'] == 14
    assert data['stats']['summary'].startswith('Average: 12.50')


def test_preview_with_in_progress_mapping(client, payload):
    payload['mappings'] = [{'source': 'Quiz 1 (1234)', 'target': ''}]
    data = client.post('/api/preview', json=payload).get_json()
    assert data['can_proceed'] is False
    assert data['stats'] is None


def test_export(client, payload, expected_output):
    response = client.post('/api/export', json=payload)
    assert response.status_code == 200
    assert response.mimetype == 'text/csv'
    assert 'canvas_import_ready.csv' in response.headers['Content-Disposition']
    assert response.data.decode('utf-8') == expected_output


def test_export_with_uploaded_files(client, source_csv, target_csv, expected_output):
    response = client.post('/api/export', data={
        'source': (BytesIO(source_csv.encode('utf-8')), 'mom.csv'),
        'target': (BytesIO(target_csv.encode('utf-8-sig')), 'canvas.csv'),
    }, content_type='multipart/form-data')
    assert response.status_code == 200
    assert response.data.decode('utf-8') == expected_output


def test_export_blocked_by_incomplete_mappings(client, payload):
    payload['mappings'] = [{'source': '', 'target': 'Quiz 1 (1234)'}]
    response = client.post('/api/export', json=payload)
    assert response.status_code == 400


def test_export_blocked_without_mappings(client, payload):
    payload['mappings'] = []
    assert client.post('/api/export', json=payload).status_code == 400


def test_bad_mappings_json(client, source_csv, target_csv):
    response = client.post('/api/preview', data={
        'source': (BytesIO(source_csv.encode('utf-8')), 'mom.csv'),
        'target': (BytesIO(target_csv.encode('utf-8')), 'canvas.csv'),
        'mappings': '{not json',
    }, content_type='multipart/form-data')
    assert response.status_code == 400


def test_analysis(client, fake_summarizer):
    response = client.post('/api/analysis', json={'stats': 'Average: 80.00'})
    assert response.get_json() == {'analysis': 'Grades look healthy.'}
    assert fake_summarizer.calls == ['Average: 80.00']


def test_analysis_failure_is_contained():
    app = create_app(settings=Settings(), summarizer=FailingSummarizer())
    response = app.test_client().post('/api/analysis', json={'stats': 'Average: 80.00'})
    assert response.status_code == 200
    assert response.get_json()['analysis'] == 'Error generating analysis.'


def test_analysis_without_key_uses_placeholder():
    app = create_app(settings=Settings(gemini_api_key=''))
    response = app.test_client().post('/api/analysis', json={'stats': 'Average: 80.00'})
    assert response.get_json()['analysis'] == 'AI analysis unavailable (Missing API Key).'


def test_non_text_csv_is_bad_request(client, target_csv):
    response = client.post('/api/preview', json={'source_csv': 5, 'target_csv': target_csv})
    assert response.status_code == 400
    assert 'source_csv' in response.get_json()['error']


def test_page_builds_cells_as_text(client):
    page = client.get('/').data.decode('utf-8')
    assert 'innerHTML' not in page
    assert 'textContent' in page


def test_page_drives_editor_and_analysis(client):
    page = client.get('/').data.decode('utf-8')
    assert "'/api/mappings'" in page
    assert "'/api/analysis'" in page


def test_markup_in_names_is_returned_as_data(client, payload):
    payload['target_csv'] = payload['target_csv'].replace('Smith, Jo', '<img src=x>')
    data = client.post('/api/preview', json=payload).get_json()
    assert data['rows'][2]['values']['Student'] == '<img src=x>'


def test_propose_lists_picker_columns(client, payload):
    data = client.post('/api/propose', json=payload).get_json()
    assert data['source_columns'] == ['Quiz 1 (1234)', 'Homework 2 (20 pts)']
    assert data['target_columns'] == ['Student', 'Quiz 1 (1234)', 'Homework 1 (5678)']


class TestMappingEditor:
    def edit(self, client, payload, mappings, **edit):
        payload['mappings'] = mappings
        payload['edit'] = edit
        return client.post('/api/mappings', json=payload)

    def test_add_then_pick_source(self, client, payload):
        data = self.edit(client, payload, [], action='add').get_json()
        assert data['mappings'] == [{'source': '', 'target': '', 'points': '10', 'new': False}]
        assert data['can_proceed'] is False

        data = self.edit(client, payload, data['mappings'], action='set_source', index=0,
                         value='Homework 2 (20 pts)').get_json()
        assert data['mappings'] == [
            {'source': 'Homework 2 (20 pts)', 'target': 'Homework 2 (20 pts)', 'points': '20', 'new': True},
        ]
        assert data['can_proceed'] is True

    def test_switch_to_existing_and_choose(self, client, payload):
        mappings = [{'source': 'Homework 2 (20 pts)', 'target': 'Homework 2 (20 pts)', 'points': '20'}]
        data = self.edit(client, payload, mappings, action='switch_to_existing', index=0).get_json()
        assert data['mappings'][0]['target'] == ''
        assert data['can_proceed'] is False

        data = self.edit(client, payload, data['mappings'], action='choose_existing', index=0,
                         value='Homework 1 (5678)').get_json()
        assert data['mappings'][0]['target'] == 'Homework 1 (5678)'
        assert data['mappings'][0]['new'] is False

    def test_create_new_uses_source_points_row(self, client, payload):
        mappings = [{'source': 'Quiz 1 (1234)', 'target': 'Homework 1 (5678)', 'points': '10'}]
        data = self.edit(client, payload, mappings, action='create_new', index=0).get_json()
        assert data['mappings'][0] == {
            'source': 'Quiz 1 (1234)', 'target': 'Quiz 1 (1234)', 'points': '15', 'new': False,
        }

    def test_rename_set_points_and_remove(self, client, payload):
        mappings = [{'source': 'Quiz 1 (1234)', 'target': 'Quiz 1 (1234)', 'points': '15'}]
        data = self.edit(client, payload, mappings, action='rename_new', index=0, value='Quiz 1 retake').get_json()
        data = self.edit(client, payload, data['mappings'], action='set_points', index=0, value='30').get_json()
        assert data['mappings'][0] == {
            'source': 'Quiz 1 (1234)', 'target': 'Quiz 1 retake', 'points': '30', 'new': True,
        }

        data = self.edit(client, payload, data['mappings'], action='remove', index=0).get_json()
        assert data['mappings'] == []
        assert data['can_proceed'] is False

    @pytest.mark.parametrize('edit', [
        {'action': 'explode', 'index': 0},
        {'action': 'remove', 'index': 3},
        {'action': 'remove', 'index': '0'},
        {'action': 'rename_new', 'index': 0},
    ])
    def test_bad_edits_are_rejected(self, client, payload, edit):
        mappings = [{'source': 'Quiz 1 (1234)', 'target': 'Quiz 1 (1234)', 'points': '15'}]
        assert self.edit(client, payload, mappings, **edit).status_code == 400

    def test_edit_from_upload_form(self, client, source_csv, target_csv):
        response = client.post('/api/mappings', data={
            'source': (BytesIO(source_csv.encode('utf-8')), 'mom.csv'),
            'target': (BytesIO(target_csv.encode('utf-8')), 'canvas.csv'),
            'mappings': '[]',
            'edit': '{"action": "add"}',
        }, content_type='multipart/form-data')
        assert response.get_json()['mappings'][0]['source'] == ''

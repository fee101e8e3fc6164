"""
Flask web interface for gradebridge.

Uploads are read in memory and never written to disk; the merged CSV is
streamed back as a download.
"""

import json
import logging
from io import BytesIO

from flask import Flask, jsonify, render_template_string, request, send_file

from .advisory import GeminiSummarizer, safe_summarize, stats_summary
from .common import load_table
from .config import Settings
from .mapper import (
    Mapping,
    add_mapping,
    can_proceed,
    choose_existing,
    create_new,
    filter_assignment_columns,
    is_new_column,
    propose_mappings,
    remove_mapping,
    rename_new,
    set_points,
    set_source,
    switch_to_existing,
)
from .output import reconcile_tables


logger = logging.getLogger(__name__)

# Edits that carry a string value in the request
VALUE_EDITS = ('set_source', 'choose_existing', 'rename_new', 'set_points')
INDEX_EDITS = VALUE_EDITS + ('remove', 'create_new', 'switch_to_existing')


class InputError(ValueError):
    """Raised for requests missing files or carrying malformed mappings."""


def _read_upload(name):
    upload = request.files.get(name)
    if upload is not None and upload.filename:
        return upload.read().decode('utf-8-sig')

    payload = request.get_json(silent=True) or {}
    text = payload.get(f'{name}_csv')
    if text is None:
        raise InputError(f"Please provide the {name} file")
    if not isinstance(text, str):
        raise InputError(f"{name}_csv must be CSV text")
    return text


def _read_json_field(name):
    """A field from the JSON body, or a JSON string in a multipart form."""
    payload = request.get_json(silent=True)
    if payload is not None:
        return payload.get(name)

    raw = request.form.get(name)
    try:
        return json.loads(raw) if raw else None
    except json.JSONDecodeError as e:
        raise InputError(f"{name} is not valid JSON: {e}") from e


def _read_mappings():
    entries = _read_json_field('mappings')
    if entries is None:
        return None
    if not isinstance(entries, list):
        raise InputError('Mappings must be a list')

    mappings = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise InputError('Each mapping must be an object with source and target')
        points = entry.get('points')
        mappings.append(Mapping(
            source_column=str(entry.get('source') or ''),
            target_column=str(entry.get('target') or ''),
            points=None if points in (None, '') else str(points),
        ))
    return mappings


def apply_edit(mappings, edit, points_hints=None, default_points='10'):
    """
    Apply one edit from the mapping editor.

    Args:
        mappings: current list of Mapping
        edit: {'action': ..., 'index': int, 'value': str}; 'add' needs
            neither index nor value
        points_hints: source points possible row, for new columns

    Returns:
        new list of Mapping
    """
    if not isinstance(edit, dict):
        raise InputError('Edit must be an object with an action')
    action = edit.get('action')

    if action == 'add':
        return add_mapping(mappings, default_points)
    if action not in INDEX_EDITS:
        raise InputError(f"Unknown edit action: {action!r}")

    index = edit.get('index')
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(mappings):
        raise InputError(f"Mapping index out of range: {index!r}")

    value = edit.get('value')
    if action in VALUE_EDITS and not isinstance(value, str):
        raise InputError(f"'{action}' needs a text value")

    if action == 'remove':
        return remove_mapping(mappings, index)
    if action == 'set_source':
        return set_source(mappings, index, value, points_hints, default_points)
    if action == 'choose_existing':
        return choose_existing(mappings, index, value)
    if action == 'create_new':
        return create_new(mappings, index, points_hints, default_points)
    if action == 'switch_to_existing':
        return switch_to_existing(mappings, index)
    if action == 'rename_new':
        return rename_new(mappings, index, value)
    return set_points(mappings, index, value)


def _mapping_to_dict(mapping, target_headers):
    return {
        'source': mapping.source_column,
        'target': mapping.target_column,
        'points': mapping.points,
        'new': is_new_column(mapping, target_headers),
    }


def _stats_to_dict(stats):
    if stats is None:
        return None
    return {
        'average': stats.average,
        'median': stats.median,
        'min': stats.minimum,
        'max': stats.maximum,
        'count': stats.count,
        'distribution': [{'range': label, 'count': count} for label, count in stats.distribution],
        'summary': stats_summary(stats),
    }


def create_app(settings=None, summarizer=None):
    """
    Build the Flask app.

    Args:
        settings: Settings, or None for the defaults
        summarizer: object with summarize(text) -> str; defaults to Gemini
            configured from settings
    """
    settings = settings or Settings()
    if summarizer is None:
        summarizer = GeminiSummarizer(settings.gemini_api_key, settings.model)

    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = 16 * 1024 * 1024  # 16MB max file size

    def load_inputs():
        source = load_table(_read_upload('source'))
        target = load_table(_read_upload('target'))
        if source.is_empty or target.is_empty:
            raise InputError('Both files need a header row')
        return source, target

    def resolve_mappings(source, target):
        mappings = _read_mappings()
        if mappings is None:
            mappings = propose_mappings(
                source.headers, target.headers, source.points_possible_row,
                keywords=settings.identity_keywords, default_points=settings.default_points,
            )
        return mappings

    def mappings_response(mappings, target, **extra):
        return jsonify({
            'mappings': [_mapping_to_dict(m, target.headers) for m in mappings],
            'can_proceed': can_proceed(mappings),
            **extra,
        })

    @app.errorhandler(InputError)
    def handle_input_error(e):
        return jsonify({'error': str(e)}), 400

    @app.route('/')
    def index():
        """Serve the main page."""
        return render_template_string(HTML_TEMPLATE, output_name=settings.output_filename)

    @app.route('/api/parse', methods=['POST'])
    def parse_files():
        """Describe both uploaded files."""
        result = {}
        for name in ('source', 'target'):
            table = load_table(_read_upload(name))
            result[name] = {
                'headers': table.headers,
                'assignment_columns': filter_assignment_columns(
                    table.headers, settings.identity_keywords
                ),
                'points_possible': table.points_possible_row,
                'rows': len(table.rows),
                'empty': table.is_empty,
            }
        result['can_map'] = not (result['source']['empty'] or result['target']['empty'])
        return jsonify(result)

    @app.route('/api/propose', methods=['POST'])
    def propose():
        """Map every source assignment column (Import All)."""
        source, target = load_inputs()
        mappings = propose_mappings(
            source.headers, target.headers, source.points_possible_row,
            keywords=settings.identity_keywords, default_points=settings.default_points,
        )
        return mappings_response(
            mappings, target,
            source_columns=filter_assignment_columns(source.headers, settings.identity_keywords),
            target_columns=filter_assignment_columns(target.headers, settings.identity_keywords),
        )

    @app.route('/api/mappings', methods=['POST'])
    def edit_mappings():
        """Apply one manual edit and return the new mapping list."""
        source, target = load_inputs()
        mappings = apply_edit(
            _read_mappings() or [], _read_json_field('edit'),
            source.points_possible_row, settings.default_points,
        )
        return mappings_response(mappings, target)

    @app.route('/api/preview', methods=['POST'])
    def preview():
        """Merged rows, match rate, and statistics for the current mappings."""
        source, target = load_inputs()
        mappings = resolve_mappings(source, target)
        result = reconcile_tables(target, source, mappings, settings.match)

        return jsonify({
            'headers': result.final_headers,
            'points_possible': result.points_map,
            'rows': [{'values': r.merged, 'matched': r.matched} for r in result.records],
            'matched': result.matched_count,
            'total': result.total_count,
            'mappings': [_mapping_to_dict(m, target.headers) for m in mappings],
            'can_proceed': can_proceed(mappings),
            'stats': _stats_to_dict(result.stats),
        })

    @app.route('/api/export', methods=['POST'])
    def export():
        """Download the import-ready CSV."""
        source, target = load_inputs()
        mappings = resolve_mappings(source, target)
        if not can_proceed(mappings):
            return jsonify({'error': 'Every mapping needs both a source and a target column'}), 400

        result = reconcile_tables(target, source, mappings, settings.match)
        logger.debug("Export: %d of %d rows matched", result.matched_count, result.total_count)

        return send_file(
            BytesIO(result.csv_text.encode('utf-8')),
            mimetype='text/csv',
            as_attachment=True,
            download_name=settings.output_filename,
        )

    @app.route('/api/analysis', methods=['POST'])
    def analysis():
        """Narrative summary of a stats summary string."""
        payload = request.get_json(silent=True) or {}
        stats_text = payload.get('stats')
        if not stats_text or not isinstance(stats_text, str):
            raise InputError('Please provide a stats summary')
        return jsonify({'analysis': safe_summarize(summarizer, stats_text)})

    return app


# HTML Template
HTML_TEMPLATE = '''
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>gradebridge</title>
    <style>
        body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", sans-serif; max-width: 960px; margin: 40px auto; color: #0f172a; }
        .card { border: 1px solid #e2e8f0; border-radius: 8px; padding: 20px; margin-bottom: 20px; }
        button { background: #4f46e5; color: white; border: none; padding: 6px 12px; border-radius: 6px; cursor: pointer; margin-left: 4px; }
        button:disabled { background: #94a3b8; cursor: default; }
        table { border-collapse: collapse; width: 100%; font-size: 13px; }
        td, th { border-bottom: 1px solid #e2e8f0; padding: 4px 8px; text-align: left; }
        tr.unmatched td { background: #fef2f2; }
        #error { color: #b91c1c; }
        #analysis { white-space: pre-wrap; }
    </style>
</head>
<body>
    <h1>gradebridge</h1>
    <div class="card">
        <label>Quiz platform export (source): <input type="file" id="source" accept=".csv"></label><br><br>
        <label>Gradebook export (target): <input type="file" id="target" accept=".csv"></label><br><br>
        <button onclick="importAll()">Import All</button>
        <p id="error"></p>
    </div>
    <div class="card" id="mapping-card" hidden>
        <h3>Column mappings</h3>
        <table>
            <thead><tr><th>Source column</th><th>Gradebook column</th><th>Points</th><th></th></tr></thead>
            <tbody id="mappings"></tbody>
        </table>
        <br>
        <button onclick="edit('add')">Add mapping</button>
        <button onclick="preview()">Preview</button>
        <button id="export" onclick="exportCsv()" disabled>Download {{ output_name }}</button>
    </div>
    <div class="card" id="summary" hidden></div>
    <div class="card" id="analysis" hidden></div>
    <div class="card"><table id="rows"></table></div>
    <script>
        const state = { mappings: [], sourceColumns: [], targetColumns: [], lastSummary: null };

        function el(tag, text) {
            const node = document.createElement(tag);
            if (text !== undefined && text !== null) node.textContent = text;
            return node;
        }
        function button(label, onClick) {
            const node = el('button', label);
            node.onclick = onClick;
            return node;
        }
        function picker(options, selected, placeholder, onChange) {
            const node = el('select');
            const blank = el('option', placeholder);
            blank.value = '';
            node.appendChild(blank);
            options.forEach(name => {
                const option = el('option', name);
                option.value = name;
                option.selected = name === selected;
                node.appendChild(option);
            });
            node.onchange = () => onChange(node.value);
            return node;
        }
        function showError(message) {
            document.getElementById('error').textContent = message || '';
        }
        function formData(extra) {
            const data = new FormData();
            data.append('source', document.getElementById('source').files[0]);
            data.append('target', document.getElementById('target').files[0]);
            data.append('mappings', JSON.stringify(state.mappings));
            Object.entries(extra || {}).forEach(([key, value]) => data.append(key, JSON.stringify(value)));
            return data;
        }
        async function post(url, extra) {
            showError('');
            const response = await fetch(url, { method: 'POST', body: formData(extra) });
            if (!response.ok) {
                showError((await response.json()).error);
                return null;
            }
            return response;
        }

        function setMappings(result) {
            state.mappings = result.mappings.map(m => ({ source: m.source, target: m.target, points: m.points }));
            document.getElementById('export').disabled = !result.can_proceed;
            renderMappings(result.mappings);
        }
        function renderMappings(mappings) {
            const body = document.getElementById('mappings');
            body.replaceChildren();
            mappings.forEach((m, i) => {
                const row = el('tr');
                const sourceCell = el('td');
                const targetCell = el('td');
                const pointsCell = el('td');
                const actionCell = el('td');
                sourceCell.appendChild(picker(state.sourceColumns, m.source, '-- source column --',
                    value => edit('set_source', i, value)));
                if (m.new) {
                    const name = el('input');
                    name.value = m.target;
                    name.onchange = () => edit('rename_new', i, name.value);
                    const points = el('input');
                    points.size = 4;
                    points.value = m.points || '';
                    points.onchange = () => edit('set_points', i, points.value);
                    targetCell.append(name, button('Use existing', () => edit('switch_to_existing', i)));
                    pointsCell.appendChild(points);
                } else {
                    targetCell.append(
                        picker(state.targetColumns, m.target, '-- existing column --',
                            value => edit('choose_existing', i, value)),
                        button('Create new', () => edit('create_new', i)));
                }
                actionCell.appendChild(button('Remove', () => edit('remove', i)));
                row.append(sourceCell, targetCell, pointsCell, actionCell);
                body.appendChild(row);
            });
            document.getElementById('mapping-card').hidden = false;
        }

        async function importAll() {
            const response = await post('/api/propose');
            if (!response) return;
            const result = await response.json();
            state.sourceColumns = result.source_columns;
            state.targetColumns = result.target_columns;
            setMappings(result);
            await preview();
        }
        async function edit(action, index, value) {
            const response = await post('/api/mappings', { edit: { action: action, index: index, value: value } });
            if (!response) return;
            setMappings(await response.json());
        }

        function renderRows(result) {
            const table = document.getElementById('rows');
            table.replaceChildren();
            const head = el('tr');
            result.headers.forEach(h => head.appendChild(el('th', h)));
            table.appendChild(head);
            result.rows.forEach(row => {
                const tr = el('tr');
                if (!row.matched) tr.className = 'unmatched';
                result.headers.forEach(h => tr.appendChild(el('td', row.values[h] || '')));
                table.appendChild(tr);
            });
        }
        async function requestAnalysis(stats) {
            const analysis = document.getElementById('analysis');
            if (!stats) {
                state.lastSummary = null;
                analysis.hidden = true;
                return;
            }
            if (stats.summary === state.lastSummary) return;
            state.lastSummary = stats.summary;
            analysis.hidden = false;
            analysis.textContent = 'Generating analysis...';
            const response = await fetch('/api/analysis', {
                method: 'POST',
                headers: { 'Content-Type': 'application/json' },
                body: JSON.stringify({ stats: stats.summary }),
            });
            const result = await response.json();
            analysis.textContent = response.ok ? result.analysis : result.error;
        }
        async function preview() {
            const response = await post('/api/preview');
            if (!response) return;
            const result = await response.json();
            document.getElementById('export').disabled = !result.can_proceed;
            const summary = document.getElementById('summary');
            summary.hidden = false;
            summary.textContent = `Matched ${result.matched} of ${result.total} students.` +
                (result.stats ? ` ${result.stats.summary}` : '');
            renderRows(result);
            requestAnalysis(result.stats);
        }
        async function exportCsv() {
            const response = await post('/api/export');
            if (!response) return;
            const url = URL.createObjectURL(await response.blob());
            const link = document.createElement('a');
            link.href = url;
            link.download = {{ output_name|tojson }};
            link.click();
        }
    </script>
</body>
</html>
'''

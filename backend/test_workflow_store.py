"""
Tests for DuckDB-backed workflow definitions.
"""
import json
from pathlib import Path

import pytest

from database import WorkflowStore
from workflow_engine import StructuralError

SAMPLE_DIR = Path(__file__).parent / 'workflows'

SIMPLE = {
    'nodes': [
        {'id': 'in', 'type': 'input', 'config': {'key': 'text'}},
        {'id': 'out', 'type': 'output', 'config': {}},
    ],
    'edges': [{'source': 'in', 'target': 'out', 'mapping': {'value': 'text'}}],
}


def test_replace_get_and_reload(tmp_path):
    db_path = tmp_path / 'workflows.duckdb'
    store = WorkflowStore(db_path)

    graph = store.replace('simple', SIMPLE)

    assert len(graph.nodes) == 2
    assert store.names() == ['simple']
    assert store.get_raw('simple') == SIMPLE
    assert WorkflowStore(db_path).get('simple').to_dict() == SIMPLE


def test_unknown_workflow_is_lookup_error(tmp_path):
    store = WorkflowStore(tmp_path / 'workflows.duckdb')

    with pytest.raises(LookupError):
        store.get('nothing')


def test_invalid_definition_is_not_stored(tmp_path):
    store = WorkflowStore(tmp_path / 'workflows.duckdb')
    store.replace('simple', SIMPLE)
    cyclic = {
        'nodes': [{'id': 'a', 'type': 'style-detector'}, {'id': 'b', 'type': 'style-detector'}],
        'edges': [{'source': 'a', 'target': 'b'}, {'source': 'b', 'target': 'a'}],
    }

    with pytest.raises(StructuralError):
        store.replace('simple', cyclic)

    assert store.get_raw('simple') == SIMPLE


def test_callers_get_private_copies(tmp_path):
    store = WorkflowStore(tmp_path / 'workflows.duckdb')
    store.replace('simple', SIMPLE)

    graph = store.get('simple')
    graph.nodes.pop()
    raw = store.get_raw('simple')
    raw['edges'].clear()

    assert len(store.get('simple').nodes) == 2
    assert store.get_raw('simple')['edges']


def test_replace_swaps_definition_for_later_reads(tmp_path):
    store = WorkflowStore(tmp_path / 'workflows.duckdb')
    store.replace('simple', SIMPLE)
    held = store.get('simple')

    updated = json.loads(json.dumps(SIMPLE))
    updated['nodes'][1]['config'] = {'fields': ['text']}
    store.replace('simple', updated)

    assert held.nodes[1].config == {}
    assert store.get('simple').nodes[1].config == {'fields': ['text']}


def test_seed_directory_skips_existing(tmp_path):
    store = WorkflowStore(tmp_path / 'workflows.duckdb')

    assert store.seed_directory(SAMPLE_DIR) == 1
    assert 'script-explainer' in store.names()
    assert store.seed_directory(SAMPLE_DIR) == 0
    assert store.seed_directory(tmp_path / 'missing') == 0

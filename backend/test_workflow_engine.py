"""
Tests for graph validation, planning, conditions and node execution.
"""
import json
from pathlib import Path

import pytest

from conftest import FakeImageProvider, FakeTextProvider
from providers.base import PollPolicy
from workflow_engine import (
    GraphValidator,
    NodeKind,
    PlanBuilder,
    StructuralError,
    WorkflowExecutor,
    WorkflowGraph,
    WorkflowServices,
    WorkflowValidationError,
    evaluate_condition,
)
from workflow_engine.node_configs import (
    ImageGeneratorConfig,
    PromptBuilderConfig,
    PromptConfig,
    StyleDetectorConfig,
    TextSplitterConfig,
)
from workflow_engine.prompting import (
    ParseError,
    build_scene_prompt,
    detect_style,
    fill_placeholders,
    parse_json_response,
    split_into_scenes,
)

SAMPLE_WORKFLOW = Path(__file__).parent / 'workflows' / 'script-explainer.json'

EIGHT_SENTENCES = (
    "Our platform helps teams ship faster. It automates the boring parts. "
    "Then a volcano erupts. Lava covers the town. "
    "Everyone rebuilds together. The town grows stronger. "
    "Nobody forgets the lesson. The end arrives."
)


def plan_order(definition):
    graph = WorkflowGraph.from_dict(definition)
    return PlanBuilder().build(GraphValidator().validate(graph)).ordered_nodes


def load_sample(max_scenes=None):
    with open(SAMPLE_WORKFLOW, 'r', encoding='utf-8') as f:
        definition = json.load(f)
    if max_scenes is not None:
        for node in definition['nodes']:
            if node['type'] == 'text-splitter':
                node['config']['maxScenes'] = max_scenes
    return definition


def services(image_provider=None, text_provider=None):
    return WorkflowServices(
        image_provider=image_provider,
        text_provider=text_provider,
        poll_policy=PollPolicy(interval=0, max_attempts=3),
    )


# ============================================================================
# Planning and validation
# ============================================================================

def test_plan_respects_dependencies_regardless_of_definition_order():
    order = plan_order({
        'nodes': [
            {'id': 'out', 'type': 'output'},
            {'id': 'b', 'type': 'style-detector'},
            {'id': 'a', 'type': 'text-splitter'},
            {'id': 'in', 'type': 'input'},
        ],
        'edges': [
            {'source': 'in', 'target': 'a'},
            {'source': 'a', 'target': 'b'},
            {'source': 'b', 'target': 'out'},
            {'source': 'in', 'target': 'b'},
        ],
    })

    assert sorted(order) == ['a', 'b', 'in', 'out']
    assert order.index('in') < order.index('a') < order.index('b') < order.index('out')


def test_shared_dependency_is_planned_once():
    order = plan_order({
        'nodes': [
            {'id': 'left', 'type': 'style-detector'},
            {'id': 'right', 'type': 'text-splitter'},
            {'id': 'in', 'type': 'input'},
        ],
        'edges': [
            {'source': 'in', 'target': 'left'},
            {'source': 'in', 'target': 'right'},
        ],
    })

    assert order.count('in') == 1
    assert order[0] == 'in'


def test_cycle_is_rejected():
    with pytest.raises(StructuralError, match='cycle'):
        plan_order({
            'nodes': [
                {'id': 'a', 'type': 'style-detector'},
                {'id': 'b', 'type': 'style-detector'},
                {'id': 'c', 'type': 'style-detector'},
            ],
            'edges': [
                {'source': 'a', 'target': 'b'},
                {'source': 'b', 'target': 'c'},
                {'source': 'c', 'target': 'a'},
            ],
        })


@pytest.mark.parametrize('definition, message', [
    (
        {'nodes': [{'id': 'a', 'type': 'input'}], 'edges': [{'source': 'a', 'target': 'ghost'}]},
        'unknown target',
    ),
    (
        {'nodes': [{'id': 'a', 'type': 'input'}, {'id': 'a', 'type': 'output'}], 'edges': []},
        'Duplicate node id',
    ),
    (
        {
            'nodes': [
                {'id': 'p', 'type': 'prompt-builder'},
                {'id': 'loop', 'type': 'loop', 'children': [{'id': 'p', 'type': 'prompt-builder'}]},
            ],
            'edges': [],
        },
        'Duplicate node id',
    ),
    (
        {'nodes': [{'id': 'a', 'type': 'teleporter'}], 'edges': []},
        'Unsupported node type',
    ),
    (
        {
            'nodes': [{'id': 'loop', 'type': 'loop', 'children': [{'id': 'in', 'type': 'input'}]}],
            'edges': [],
        },
        'cannot run inside a loop',
    ),
    (
        {
            'nodes': [{
                'id': 'outer', 'type': 'loop',
                'children': [{'id': 'inner', 'type': 'loop', 'children': [{'id': 'p', 'type': 'prompt-builder'}]}],
            }],
            'edges': [],
        },
        'loop nodes cannot run inside a loop',
    ),
    (
        {
            'nodes': [{'id': 'a', 'type': 'output', 'children': [{'id': 'b', 'type': 'prompt'}]}],
            'edges': [],
        },
        'only loop nodes',
    ),
    ({'nodes': [], 'edges': []}, 'no nodes'),
])
def test_structural_errors(definition, message):
    with pytest.raises(StructuralError, match=message):
        plan_order(definition)


def test_legacy_graph_keys_are_accepted():
    graph = WorkflowGraph.from_dict({
        'nodes': [{'id': 'a', 'type': 'input'}, {'id': 'b', 'type': 'image_gen'}],
        'connections': [{'from': 'a', 'to': 'b'}],
    })

    assert graph.nodes[1].kind == NodeKind.IMAGE_GENERATOR
    assert graph.edges[0].source == 'a'
    assert graph.to_dict()['edges'] == [{'source': 'a', 'target': 'b'}]


def test_invalid_node_config_is_structural():
    executor = WorkflowExecutor({
        'nodes': [{'id': 's', 'type': 'text-splitter', 'config': {'sentencesPerScene': 0}}],
        'edges': [],
    })

    with pytest.raises(StructuralError, match='sentencesPerScene'):
        executor.check()


# ============================================================================
# Conditions
# ============================================================================

@pytest.mark.parametrize('condition, context, expected', [
    (None, {}, True),
    ('', {}, True),
    ('   ', {'x': 1}, True),
    ('!name', {}, True),
    ('!name', {'name': ''}, True),
    ('!name', {'name': '   '}, True),
    ('!name', {'name': 0}, True),
    ('!name', {'name': 'x'}, False),
    ('name', {'name': 'x'}, True),
    ('name', {'name': '  '}, False),
    ('name', {}, False),
    ('name', {'name': False}, False),
    ('style==3d-tech', {'style': '3d-tech'}, True),
    ('style==3d-tech', {'style': 'organic-warm'}, False),
    ('style == 3d-tech', {'style': '3d-tech'}, True),
    ('flag==true', {'flag': True}, True),
    ('flag==false', {'flag': False}, True),
    ('count==3', {'count': 3}, True),
    ('style!=3d-tech', {}, True),
    ('style!=3d-tech', {'style': '3d-tech'}, False),
    ('count==0', {'count': 0}, True),
    ('count!=0', {'count': 0}, False),
    ('ratio==0.0', {'ratio': 0.0}, True),
    ('tags==[]', {'tags': []}, True),
    ('missing==None', {}, False),
])
def test_condition_grammar(condition, context, expected):
    assert evaluate_condition(condition, context) is expected


# ============================================================================
# Text helpers
# ============================================================================

def test_splitter_strips_annotations_and_groups_sentences():
    text = "### Intro\nFirst one. Second two! *pause* Third three?\n\n\n\n[music] Fourth four."
    clean_text, scenes = split_into_scenes(text, 2, 10)

    assert clean_text == "First one. Second two! Third three? Fourth four."
    assert scenes == [
        {'index': 0, 'text': "First one. Second two!"},
        {'index': 1, 'text': "Third three? Fourth four."},
    ]


def test_splitter_without_terminal_punctuation_is_one_scene():
    _, scenes = split_into_scenes("just some words with no ending", 2, 10)

    assert scenes == [{'index': 0, 'text': "just some words with no ending"}]


def test_splitter_caps_scene_count():
    _, scenes = split_into_scenes(EIGHT_SENTENCES, 2, 3)

    assert len(scenes) == 3
    assert scenes[2]['text'] == "Everyone rebuilds together. The town grows stronger."


@pytest.mark.parametrize('script', [
    EIGHT_SENTENCES + " Trailing words",
    "  ### Scene One\nThe hero wakes. She runs.",
    "\t### Act 1\n  ### Scene 1\n  First line. Second line! Third line?",
])
def test_splitter_is_idempotent_on_its_own_output(script):
    _, scenes = split_into_scenes(script, 3, 10)
    rejoined = ' '.join(scene['text'] for scene in scenes)

    _, again = split_into_scenes(rejoined, 3, 10)

    assert scenes
    assert again == scenes
    assert not any('###' in scene['text'] for scene in scenes)


def test_splitter_config_defaults():
    config = TextSplitterConfig.from_dict('s', {})

    assert (config.sentences_per_scene, config.max_scenes) == (2, 10)


def test_style_rules_first_match_wins():
    rules = StyleDetectorConfig.from_dict('s', {}).rules

    # "learn" (friendly-cartoon) is listed before "design" (bold-dynamic)
    assert detect_style("Learn to design posters", rules, 'modern-minimal') == (
        'friendly-cartoon', r'learn|teach|education|student|course|skill'
    )
    assert detect_style("BUSINESS REVENUE", rules, 'modern-minimal')[0] == 'professional-minimal'


def test_style_rule_order_comes_from_config():
    config = StyleDetectorConfig.from_dict('s', {
        'rules': [['second', 'volcano'], ['first', 'volcano|lava']],
        'defaultStyle': 'plain',
    })

    assert detect_style("A volcano", config.rules, config.default_style) == ('second', 'volcano')
    assert detect_style("Quiet lake", config.rules, config.default_style) == ('plain', None)


def test_scene_prompt_positional_context():
    config = PromptBuilderConfig.from_dict('p', {})

    first = build_scene_prompt(config, "The journey begins", '3d-tech', 0, 3)
    middle = build_scene_prompt(config, "The journey continues", 'unknown-style', 1, 3)
    last = build_scene_prompt(config, "The journey ends", '3d-tech', 2, 3)

    assert first.startswith('Explainer video frame. journey begins.')
    assert 'Futuristic 3D tech aesthetic' in first
    assert 'Opening scene' in first
    assert 'Scene 2 of 3' in middle
    assert 'Clean modern minimal design' in middle
    assert 'Final scene' in last


def test_scene_prompt_unknown_default_style_uses_modern_minimal():
    config = PromptBuilderConfig.from_dict('p', {'defaultStyle': 'watercolour'})

    prompt = build_scene_prompt(config, "A quiet harbour", None, 0, 1)

    assert 'Clean modern minimal design' in prompt
    assert 'harbour. .' not in prompt


def test_scene_prompt_text_overlay():
    config = PromptBuilderConfig.from_dict('p', {
        'textOverlay': True,
        'overlayPrompt': 'Caption reading "{text}"',
    })

    prompt = build_scene_prompt(config, "Hello world", None, 1, 3)

    assert 'Caption reading "Hello world"' in prompt


def test_fill_placeholders_keeps_unknown_keys():
    filled = fill_placeholders("Topic {topic}, tags {tags}, {missing}", {
        'topic': 'volcanoes',
        'tags': ['lava', 'ash'],
    })

    assert filled == 'Topic volcanoes, tags ["lava", "ash"], {missing}'


def test_parse_json_response_accepts_fenced_block():
    content = 'Here you go:\n```json\n{"title": "Eruption"}\n```\nEnjoy.'

    assert parse_json_response(content) == {'title': 'Eruption'}
    assert parse_json_response('[1, 2]') == [1, 2]


def test_parse_json_response_keeps_raw_text():
    with pytest.raises(ParseError) as excinfo:
        parse_json_response("definitely not json")

    assert excinfo.value.raw == "definitely not json"


def test_typed_config_defaults():
    prompt = PromptConfig.from_dict('p', {})
    image = ImageGeneratorConfig.from_dict('i', {})

    assert prompt.provider_model == 'claude-sonnet-4-5'
    assert prompt.max_tokens == 2048
    assert image.resolve_size() == (1920, 1080)
    assert ImageGeneratorConfig.from_dict('i', {'aspectRatio': '9:16'}).resolve_size() == (1080, 1920)
    assert ImageGeneratorConfig.from_dict('i', {'width': 640, 'height': 480}).resolve_size() == (640, 480)

    with pytest.raises(StructuralError):
        PromptConfig.from_dict('p', {'outputFormat': 'xml'})


# ============================================================================
# Execution
# ============================================================================

async def test_script_workflow_end_to_end():
    provider = FakeImageProvider(polls_to_complete=2)
    progress = []
    executor = WorkflowExecutor(load_sample(max_scenes=3), services(provider))

    result = await executor.execute({'script': EIGHT_SENTENCES}, on_progress=progress.append)

    assert result['sceneCount'] == 3
    assert result['style'] == '3d-tech'
    assert result['successCount'] == 3
    assert result['failureCount'] == 0
    assert [frame['scene']['index'] for frame in result['frames']] == [0, 1, 2]
    assert all(frame['imageUrl'].startswith('https://cdn.test/') for frame in result['frames'])
    assert progress == pytest.approx([1 / 3, 2 / 3, 1.0])

    assert len(provider.submitted) == 3
    assert 'Opening scene' in provider.submitted[0]['prompt']
    assert 'Final scene' in provider.submitted[2]['prompt']
    assert provider.submitted[0]['sizing'].ratio == '16:9'
    assert provider.submitted[0]['extras']['model'] == 'fal-ai/flux-lora'


async def test_loop_item_failure_is_isolated():
    provider = FakeImageProvider(behaviours={'volcano': 'reject'})
    executor = WorkflowExecutor(load_sample(max_scenes=3), services(provider))

    result = await executor.execute({'script': EIGHT_SENTENCES})
    frames = result['frames']

    assert result['successCount'] == 2
    assert result['failureCount'] == 1
    assert frames[1]['success'] is False
    assert 'rejected' in frames[1]['error']
    assert frames[2]['success'] is True
    assert frames[2]['error'] is None
    assert frames[2]['scene']['text'].startswith('Everyone')


async def test_loop_child_exception_becomes_item_failure():
    class ExplodingProvider(FakeImageProvider):
        async def submit(self, prompt, sizing, extras=None):
            if 'lava' in prompt:
                raise RuntimeError("driver crashed")
            return await super().submit(prompt, sizing, extras)

    executor = WorkflowExecutor(load_sample(max_scenes=3), services(ExplodingProvider()))

    result = await executor.execute({'script': EIGHT_SENTENCES})

    assert [frame['success'] for frame in result['frames']] == [True, False, True]
    assert result['frames'][1]['error'] == 'driver crashed'


async def test_loop_children_do_not_leak_outputs_between_items():
    definition = {
        'nodes': [
            {'id': 'in', 'type': 'input', 'config': {'key': 'items'}},
            {
                'id': 'loop',
                'type': 'loop',
                'children': [
                    {'id': 'style', 'type': 'style-detector', 'config': {
                        'rules': [['hot', 'lava']], 'defaultStyle': 'plain',
                    }},
                    {'id': 'prompt', 'type': 'prompt-builder', 'condition': 'style==hot'},
                ],
            },
            {'id': 'out', 'type': 'output'},
        ],
        'edges': [
            {'source': 'in', 'target': 'loop', 'mapping': {'value': 'items'}},
            {'source': 'loop', 'target': 'out', 'mapping': {'results': 'results'}},
        ],
    }
    items = ['lava flows', 'calm lake']

    result = await WorkflowExecutor(definition).execute({'items': items})

    first, second = result['results']
    assert first['style'] == 'hot' and 'prompt' in first
    assert second['style'] == 'plain'
    assert 'prompt' not in second


async def test_missing_required_input_fails_before_any_node_runs():
    provider = FakeImageProvider()
    executor = WorkflowExecutor(load_sample(), services(provider))

    with pytest.raises(WorkflowValidationError, match='script'):
        await executor.execute({'text': 'wrong key'})

    assert provider.submitted == []


async def test_structural_error_raised_from_execute():
    executor = WorkflowExecutor({
        'nodes': [{'id': 'a', 'type': 'input'}],
        'edges': [{'source': 'a', 'target': 'missing'}],
    })

    with pytest.raises(StructuralError):
        await executor.execute({})


async def test_input_value_resolution():
    definition = {
        'nodes': [
            {'id': 'keyed', 'type': 'input', 'config': {'key': 'topic'}},
            {'id': 'fixed', 'type': 'input', 'config': {'value': 'preset'}},
        ],
        'edges': [],
    }

    result = await WorkflowExecutor(definition).execute({'topic': 'lava'})

    assert result['keyed']['value'] == 'lava'
    assert result['keyed']['topic'] == 'lava'
    assert result['fixed']['value'] == 'preset'


async def test_false_node_condition_skips_node():
    definition = {
        'nodes': [
            {'id': 'in', 'type': 'input', 'config': {'key': 'text'}},
            {'id': 'style', 'type': 'style-detector', 'condition': 'mode==detect'},
            {'id': 'out', 'type': 'output'},
        ],
        'edges': [
            {'source': 'in', 'target': 'style', 'mapping': {'value': 'text'}},
            {'source': 'style', 'target': 'out', 'mapping': {'style': 'style'}},
            {'source': 'in', 'target': 'out', 'mapping': {'mode': 'mode'}},
        ],
    }
    executor = WorkflowExecutor(definition)

    skipped = await executor.execute({'text': 'learn things', 'mode': 'skip'})
    detected = await executor.execute({'text': 'learn things', 'mode': 'detect'})

    assert skipped == {'mode': 'skip'}
    assert detected == {'mode': 'detect', 'style': 'friendly-cartoon'}


async def test_false_edge_condition_skips_wiring():
    definition = {
        'nodes': [
            {'id': 'in', 'type': 'input', 'config': {'key': 'text'}},
            {'id': 'out', 'type': 'output'},
        ],
        'edges': [
            {'source': 'in', 'target': 'out', 'mapping': {'value': 'text'}, 'condition': '!quiet'},
        ],
    }
    executor = WorkflowExecutor(definition)

    assert await executor.execute({'text': 'hello'}) == {'text': 'hello'}
    assert await executor.execute({'text': 'hello', 'quiet': True}) == {}


async def test_prompt_node_parses_fenced_json():
    text = FakeTextProvider(responses=['Sure:\n```json\n{"title": "Eruption"}\n```'])
    definition = {
        'nodes': [
            {'id': 'in', 'type': 'input', 'config': {'key': 'topic'}},
            {'id': 'llm', 'type': 'prompt', 'config': {
                'userPrompt': 'Write a title about {topic}',
                'systemPrompt': 'Be brief.',
                'outputFormat': 'json',
                'maxTokens': 100,
            }},
        ],
        'edges': [{'source': 'in', 'target': 'llm', 'mapping': {'topic': 'topic'}}],
    }

    result = await WorkflowExecutor(definition, services(text_provider=text)).execute({'topic': 'volcanoes'})

    assert result['llm']['output'] == {'title': 'Eruption'}
    assert result['llm']['success'] is True
    assert text.calls == [{
        'prompt': 'Write a title about volcanoes',
        'system': 'Be brief.',
        'model': 'claude-sonnet-4-5',
        'max_tokens': 100,
    }]


async def test_prompt_node_parse_failure_keeps_raw():
    text = FakeTextProvider(responses=['no json here'])
    definition = {
        'nodes': [{'id': 'llm', 'type': 'prompt', 'config': {'userPrompt': 'x', 'outputFormat': 'json'}}],
        'edges': [],
    }

    result = await WorkflowExecutor(definition, services(text_provider=text)).execute({})

    assert result['llm']['success'] is False
    assert result['llm']['raw'] == 'no json here'
    assert 'parse' in result['llm']['error']


async def test_unexpected_node_exception_does_not_stop_run():
    class BrokenTextProvider(FakeTextProvider):
        async def generate(self, prompt, system='', model=None, max_tokens=2048):
            raise RuntimeError("socket exploded")

    definition = {
        'nodes': [
            {'id': 'llm', 'type': 'prompt', 'config': {'userPrompt': 'x'}},
            {'id': 'out', 'type': 'output'},
        ],
        'edges': [
            {'source': 'llm', 'target': 'out', 'mapping': {'success': 'ok', 'error': 'why'}},
        ],
    }

    result = await WorkflowExecutor(definition, services(text_provider=BrokenTextProvider())).execute({})

    assert result == {'ok': False, 'why': 'socket exploded'}


async def test_missing_image_provider_is_reported_as_data():
    definition = {
        'nodes': [{'id': 'img', 'type': 'image-generator'}],
        'edges': [],
    }

    result = await WorkflowExecutor(definition).execute({'prompt': 'ignored'})

    assert result['img']['success'] is False


async def test_concurrent_runs_share_one_executor():
    import asyncio

    provider = FakeImageProvider()
    executor = WorkflowExecutor(load_sample(max_scenes=2), services(provider))
    scripts = [EIGHT_SENTENCES, "Money grows. Business booms. Profit follows."]

    first, second = await asyncio.gather(*(executor.execute({'script': s}) for s in scripts))

    assert first['style'] == '3d-tech'
    assert second['style'] == 'professional-minimal'
    assert first['sceneCount'] == 2 and second['sceneCount'] == 2
    assert len(provider.submitted) == 4

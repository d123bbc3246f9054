"""
Tests for loading workflow definitions from YAML and JSON files.
"""

import json

import pytest
import yaml

from hookflow.errors import WorkflowDefinitionError
from hookflow.models import Workflow
from hookflow.parser import WorkflowParser


YAML_WORKFLOW = """
name: Format on save
description: Run black on edited Python files
trigger:
  event: FileChange
  condition: file_type
  conditionParams:
    extension: py
settings:
  stopOnError: false
steps:
  - id: black
    name: Black
    command: black ${data.filePath}
    timeout: 10000
    retries: 1
"""


class TestLoadWorkflow:

    def test_yaml_file(self, tmp_path):
        path = tmp_path / 'format.yaml'
        path.write_text(YAML_WORKFLOW)

        workflow = WorkflowParser.load_workflow(str(path))

        assert workflow.id == 'format'
        assert workflow.name == 'Format on save'
        assert workflow.trigger.condition_params == {'extension': 'py'}
        assert workflow.settings.stop_on_error is False
        assert workflow.steps[0].retries == 1

    def test_json_file_with_id(self, tmp_path):
        path = tmp_path / 'x.json'
        path.write_text(json.dumps({
            'id': 'explicit', 'trigger': {'event': 'Error'},
            'steps': [{'command': 'true'}],
        }))

        assert WorkflowParser.load_workflow(str(path)).id == 'explicit'

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            WorkflowParser.load_workflow(str(tmp_path / 'nope.yaml'))

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / 'list.yaml'
        path.write_text("- a\n- b\n")

        with pytest.raises(WorkflowDefinitionError, match="mapping"):
            WorkflowParser.load_workflow(str(path))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / 'bad.yaml'
        path.write_text("trigger: [unclosed\n")

        with pytest.raises(WorkflowDefinitionError, match="Cannot parse"):
            WorkflowParser.load_workflow(str(path))

    def test_load_directory_skips_bad_and_foreign_files(self, tmp_path):
        (tmp_path / 'b.yml').write_text(YAML_WORKFLOW)
        (tmp_path / 'a.json').write_text(json.dumps({'trigger': {'event': 'Error'}}))
        (tmp_path / 'c.yaml').write_text("name: no trigger\n")
        (tmp_path / 'notes.txt').write_text("not a workflow")

        workflows = WorkflowParser.load_directory(str(tmp_path))

        assert [w.id for w in workflows] == ['a', 'b']

    def test_load_missing_directory(self, tmp_path):
        assert WorkflowParser.load_directory(str(tmp_path / 'missing')) == []


class TestValidate:

    def test_valid(self):
        workflow = Workflow.from_dict(yaml.safe_load(YAML_WORKFLOW), workflow_id='f')
        assert WorkflowParser.validate(workflow) == (True, [])

    def test_problems(self):
        workflow = Workflow.from_dict({
            'id': 'w',
            'trigger': {'event': 'OnFullMoon', 'condition': 'tool_name'},
            'steps': [
                {'id': 'a', 'command': 'true'},
                {'id': 'a', 'command': 'false'},
                {'id': 'h', 'type': 'hook'},
            ],
        })

        is_valid, errors = WorkflowParser.validate(workflow)

        assert not is_valid
        assert any('Unknown trigger event' in e for e in errors)
        assert any("Duplicate step id 'a'" in e for e in errors)
        assert any('hookId' in e for e in errors)
        assert any('conditionParams.tool' in e for e in errors)

    def test_no_steps(self):
        workflow = Workflow.from_dict({'id': 'w', 'trigger': {'event': 'Error'}})
        assert WorkflowParser.validate(workflow) == (False, ['Workflow has no steps'])


@pytest.mark.parametrize("kind", ['lint', 'commit', 'session'])
def test_examples_are_valid(kind):
    definition = yaml.safe_load(WorkflowParser.create_example_workflow(kind))
    workflow = Workflow.from_dict(definition)

    assert WorkflowParser.validate(workflow) == (True, [])

import pytest

from langpad.resolver import (
    is_back_reference,
    list_placeholders,
    resolve,
    resolve_back_references,
    substitute_variables,
)
from langpad.types import ActionRun, Run, StepRun, Variable


def _run():
    return Run(flow_id="f1", steps=[
        StepRun(step_id="s1", actions=[ActionRun(action_id="a1", output="hello"),
                                       ActionRun(action_id="a2", output="world")]),
        StepRun(step_id="s2", actions=[ActionRun(action_id="a3", output="future")]),
    ])


VARS = [Variable(id="1", name="$topic", value="rust"), Variable(id="2", name="$tone", value="dry")]


class TestVariableSubstitution:

    @pytest.mark.parametrize("text", ["plain text", "braces { but } no token", "$topic without braces", ""])
    def test_text_without_tokens_is_unchanged(self, text):
        assert resolve(text, VARS, _run(), 1) == text
        assert resolve(text) == text

    def test_none_resolves_to_empty(self):
        assert resolve(None, VARS) == ""
        assert substitute_variables(None, VARS) == ""
        assert resolve_back_references(None, _run(), 1) == ""

    def test_both_spellings_and_whitespace(self):
        text = "About {{$topic}}, {{ $topic }} and { $tone }."
        assert resolve(text, VARS) == "About rust, rust and dry."

    def test_unknown_tokens_stay_verbatim(self):
        assert resolve("Hi {{$missing}} {$topic}", VARS) == "Hi {{$missing}} rust"

    def test_substitution_is_single_pass(self):
        variables = [Variable(id="1", name="$a", value="{{$b}}"), Variable(id="2", name="$b", value="B")]
        assert resolve("{{$a}}", variables) == "{{$b}}"

    def test_non_ascii_and_punctuated_names(self):
        variables = [Variable(id="1", name="$café", value="x"), Variable(id="2", name="$user-id", value="7")]
        assert resolve("{{$café}} { $café } {{$user-id}}", variables) == "x x 7"

    def test_mapping_variables(self):
        assert resolve("{{$x}}-{{$y}}", {"$x": "1", "$y": None}) == "1-"

    def test_substitute_variables_leaves_back_references(self):
        text = "{{$topic}} {{$step1.action1.output}}"
        assert substitute_variables(text, VARS) == "rust {{$step1.action1.output}}"


class TestBackReferences:

    def test_earlier_step_output(self):
        assert resolve("Got: {{$step1.action2.output}}", VARS, _run(), 1) == "Got: world"

    def test_forward_and_self_references_are_empty(self):
        run = _run()
        # step 2 has data, but it is not before the current step
        assert resolve("[{{$step2.action1.output}}]", run=run, current_step_index=1) == "[]"
        assert resolve("[{{$step1.action1.output}}]", run=run, current_step_index=0) == "[]"

    def test_out_of_range_action_is_empty(self):
        assert resolve("[{{$step1.action9.output}}]", run=_run(), current_step_index=1) == "[]"

    def test_without_run_is_empty(self):
        assert resolve("[{{$step1.action1.output}}]", VARS, None, 3) == "[]"

    def test_resolve_back_references_leaves_variables(self):
        text = "{{$topic}} {$step1.action1.output}"
        assert resolve_back_references(text, _run(), 1) == "{{$topic}} hello"

    def test_is_back_reference(self):
        assert is_back_reference("$step12.action3.output")
        assert not is_back_reference("$step1.action1")
        assert not is_back_reference("$topic")


def test_list_placeholders_in_order():
    text = "{{$topic}} then {$step1.action1.output} and {{ $tone }}"
    assert list_placeholders(text) == ["$topic", "$step1.action1.output", "$tone"]
    assert list_placeholders("") == []

"""Workflow declaration checks."""

import pytest

from delivery_kernel.domain.workflow import Transition, Workflow


def _workflow(**overrides):
    fields = dict(
        name="sample",
        description="",
        initial_state="a",
        states=("a", "b", "c"),
        transitions=(Transition("a", "b", "go"), Transition("b", "c", "finish")),
        terminal_states=("c",),
    )
    fields.update(overrides)
    return Workflow(**fields)


class TestWorkflowDeclaration:
    def test_valid_declaration(self):
        wf = _workflow()
        assert wf.target_of("a", "go") == "b"
        assert wf.target_of("a", "finish") is None
        assert wf.is_terminal("c")

    def test_initial_state_must_be_declared(self):
        with pytest.raises(ValueError, match="initial state"):
            _workflow(initial_state="z")

    def test_transition_states_must_be_declared(self):
        with pytest.raises(ValueError, match="undeclared state"):
            _workflow(transitions=(Transition("a", "z", "go"),))

    def test_terminal_state_has_no_outgoing_transition(self):
        with pytest.raises(ValueError, match="terminal state"):
            _workflow(transitions=(Transition("c", "a", "reopen"),))

    def test_ambiguous_action_has_no_single_target(self):
        wf = _workflow(
            transitions=(Transition("a", "b", "go"), Transition("a", "c", "go")),
            terminal_states=(),
        )
        assert wf.allows("a", "go")
        assert wf.target_of("a", "go") is None

"""Tests for option parsing and key bindings."""
import pytest

from rewindstate import BubbleMode, InvalidConfiguration, KeyBindings, RewindOptions, UndoModel


def test_mapping_with_aliases():
    """Test that camelCase aliases map onto option fields."""
    options = RewindOptions.from_mapping({
        'observe': ['x'],
        'bubbleMode': 'on_end',
        'bubbleSettle': 120,
        'model': 'history',
    })
    assert options.bubble_mode is BubbleMode.ON_END
    assert options.bubble_settle == 120
    assert options.model is UndoModel.HISTORY
    assert options.observe == ('x',)


def test_same_option_twice_rejected():
    with pytest.raises(InvalidConfiguration):
        RewindOptions.from_mapping({'bubble_mode': 'never', 'bubbleMode': 'always'})


def test_debounce_zero_means_synchronous():
    options = RewindOptions(observe=('x', 'y'), debounce={'x': 0, 'y': 25})
    assert options.debounce_for('x') is None
    assert options.debounce_for('y') == 25
    assert options.debounce_for('z') is None


def test_coerce_rejects_other_types():
    with pytest.raises(InvalidConfiguration):
        RewindOptions.coerce(['observe'])


class TestKeyBindings:

    def test_defaults(self):
        keys = KeyBindings()
        assert keys.action_for("Ctrl+Z") == 'undo'
        assert keys.action_for("Meta+Z") == 'undo'
        assert keys.action_for("Ctrl+Shift+Z") == 'redo'
        assert keys.action_for("Ctrl+Y") == 'redo'
        assert keys.action_for("Z") is None

    def test_single_string_combo(self):
        keys = KeyBindings.from_mapping({'redo': "F4"})
        assert keys.redo == ("F4",)
        assert keys.undo == KeyBindings().undo

    def test_unknown_action(self):
        with pytest.raises(InvalidConfiguration):
            KeyBindings.from_mapping({'save': ["Ctrl+S"]})

"""Tests for the leaf Rewindable: navigation, restore failures, events, options."""
import pytest

from rewindstate import (
    AccessorCodec,
    InvalidConfiguration,
    RecordedEvent,
    RestoreFailed,
    Rewindable,
    RewindOptions,
    UndoModel,
    get_rewindable,
    observed,
    set_default_model,
)

from conftest import Tile, rw


class TestNavigation:

    def test_round_trip(self, tile):
        """Test that n-1 undos then n-1 redos return to the last snapshot."""
        for value in range(1, 5):
            tile.x = value
        n = rw(tile).history_length
        for _ in range(n - 1):
            assert rw(tile).undo() is True
        assert tile.x == 0
        for _ in range(n - 1):
            assert rw(tile).redo() is True
        assert tile.x == 4
        assert rw(tile).current_index == n - 1

    def test_boundaries(self, tile):
        """Test that undo/redo at the ends return False and leave state alone."""
        assert rw(tile).undo() is False
        assert rw(tile).redo() is False
        assert rw(tile).current_index == 0

    def test_restore_does_not_record(self, tile):
        """Test that writes performed by undo are not recorded."""
        tile.x = 3
        rw(tile).undo()
        assert rw(tile).history_length == 2
        assert rw(tile).can_redo

    def test_record_after_undo_truncates(self, tile):
        tile.x = 1
        tile.x = 2
        rw(tile).undo()
        tile.x = 7
        assert [entry['x'] for entry in rw(tile).history] == [0, 1, 7]

    def test_history_model_keeps_future(self, scheduler):
        """Test that the history model never discards forward entries."""
        t = Tile()
        Rewindable(t, {'observe': ['x'], 'model': 'history'})
        t.x = 1
        t.x = 2
        rw(t).undo()
        t.x = 7
        assert [entry['x'] for entry in rw(t).history] == [0, 1, 2, 1, 7]

    def test_travel(self, tile):
        for value in (1, 2, 3):
            tile.x = value
        assert rw(tile).travel(1) is True
        assert tile.x == 1
        assert rw(tile).travel(1) is False
        assert rw(tile).travel(-1) is True
        assert tile.x == 3
        with pytest.raises(IndexError):
            rw(tile).travel(10)

    def test_drop_current_rematerializes(self, tile):
        """Test that dropping the current entry applies the new current one."""
        tile.x = 1
        tile.x = 2
        rw(tile).drop(2)
        assert tile.x == 1
        assert rw(tile).history_length == 2

    def test_drop_ends_coalesced_gesture(self, tile):
        """Test that a coalesced call after drop pushes instead of overwriting."""
        tile.move(1, 0)
        tile.move(1, 0)
        rw(tile).drop(1)
        assert tile.x == 0
        tile.move(5, 0)
        assert [entry['x'] for entry in rw(tile).history] == [0, 5]

    def test_drop_negative_index(self, tile):
        tile.x = 1
        tile.x = 2
        rw(tile).drop(-1)
        assert tile.x == 1

    def test_snapshot_setter_applies_without_recording(self, tile):
        rw(tile).snapshot = {'x': 8, 'y': 9, 'label': "set"}
        assert (tile.x, tile.y, tile.label) == (8, 9, "set")
        assert rw(tile).history_length == 1

    def test_snapshot_is_isolated_from_live_mutation(self, scheduler):
        """Test that mutating a live list never alters a recorded entry."""
        class Bag:
            items = observed([])

        bag = Bag()
        Rewindable(bag, {'observe': ['items']})
        bag.items.append("a")
        assert rw(bag).history[0] == {'items': []}


class TestSeedingAndMerge:

    def test_seeded_history_materializes_index(self, scheduler):
        t = Tile()
        Rewindable(t, {'observe': ['x']}, history=[{'x': 1}, {'x': 2}, {'x': 3}], index=1)
        assert t.x == 2
        assert rw(t).can_undo and rw(t).can_redo

    def test_load_history(self, tile):
        rw(tile).load_history([{'x': 5, 'y': 5, 'label': ""}])
        assert tile.x == 5
        assert rw(tile).history_length == 1

    def test_merge_history(self, tile):
        """Test that merging keeps the common prefix and moves to the end."""
        base = rw(tile).history[0]
        tile.x = 1
        grown = [base, {'x': 2, 'y': 0, 'label': ""}, {'x': 3, 'y': 0, 'label': ""}]
        rw(tile).merge_history(grown)
        assert [entry['x'] for entry in rw(tile).history] == [0, 2, 3]
        assert tile.x == 3

    def test_merge_history_ends_coalesced_gesture(self, tile):
        base = rw(tile).history[0]
        tile.move(1, 0)
        rw(tile).merge_history([base, {'x': 7, 'y': 0, 'label': ""}])
        tile.move(1, 0)
        assert [entry['x'] for entry in rw(tile).history] == [0, 7, 8]

    def test_seeded_negative_index(self, scheduler):
        """Test that index=-1 selects the last seeded entry."""
        t = Tile()
        Rewindable(t, {'observe': ['x']}, history=[{'x': 1}, {'x': 2}], index=-1)
        assert t.x == 2
        assert rw(t).current_index == 1

    def test_default_model_from_config(self, scheduler):
        set_default_model("history")
        t = Tile()
        Rewindable(t, {'observe': ['x']})
        assert rw(t).history_store.model is UndoModel.HISTORY


class TestRestoreFailure:

    def make_flaky(self):
        state = {'value': 0, 'rejected': set()}

        def set_value(snapshot):
            if snapshot in state['rejected']:
                state['value'] = "half-written"
                raise RuntimeError("target rejected state")
            state['value'] = snapshot

        class Holder:
            pass

        holder = Holder()
        Rewindable(holder, codec=AccessorCodec(lambda: state['value'], set_value))
        return holder, state

    def test_failed_undo_leaves_state_and_index(self, scheduler):
        """Test that a failed restore rolls back and raises RestoreFailed."""
        holder, state = self.make_flaky()
        state['value'] = 1
        rw(holder).record()
        state['rejected'].add(0)

        with pytest.raises(RestoreFailed) as exc_info:
            rw(holder).undo()

        assert exc_info.value.entity_id == rw(holder).rewind_id
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert rw(holder).current_index == 1
        assert state['value'] == 1

    def test_failed_load_history_keeps_previous_history(self, scheduler):
        holder, state = self.make_flaky()
        state['value'] = 1
        rw(holder).record()
        state['rejected'].update({5, 6})
        with pytest.raises(RestoreFailed):
            rw(holder).load_history([5, 6])
        assert rw(holder).history == (0, 1)
        assert state['value'] == 1


class TestEvents:

    def test_recorded_event(self, tile):
        """Test that recorded listeners get the entity id and new index."""
        events = []
        rw(tile).on_recorded(events.append)
        tile.x = 1
        assert events == [RecordedEvent(entity_id="tile", index=1)]
        rw(tile).off_recorded(events.append)
        tile.x = 2
        assert len(events) == 1

    def test_history_changed_on_navigation(self, tile):
        calls = []
        rw(tile).on_history_changed(lambda: calls.append(rw(tile).current_index))
        tile.x = 1
        rw(tile).undo()
        rw(tile).redo()
        assert calls == [1, 0, 1]

    def test_listener_errors_are_swallowed(self, tile, caplog):
        def bad(event):
            raise ValueError("listener broke")

        rw(tile).on_recorded(bad)
        tile.x = 1
        assert rw(tile).history_length == 2
        assert "listener broke" in caplog.text


class TestKeys:

    def test_default_bindings(self, tile):
        """Test that default undo/redo combos dispatch."""
        tile.x = 1
        assert rw(tile).handle_key("Ctrl+Z") is True
        assert tile.x == 0
        assert rw(tile).handle_key("Shift+Meta+Z") is True
        assert tile.x == 1
        assert rw(tile).handle_key("Ctrl+X") is False

    def test_custom_bindings_replace_defaults(self, scheduler):
        t = Tile()
        Rewindable(t, {'observe': ['x'], 'keys': {'undo': ['Alt+Backspace']}})
        t.x = 1
        assert rw(t).handle_key("Ctrl+Z") is False
        assert rw(t).handle_key("Alt+Backspace") is True
        assert t.x == 0
        assert rw(t).handle_key("Ctrl+Y") is True


class TestConfiguration:

    @pytest.mark.parametrize("options", [
        {'observe': ['x'], 'bogus': 1},
        {'observe': ['x'], 'coalesce': ['x']},
        {'observe': ['x'], 'debounce': {'y': 10}},
        {'observe': ['x'], 'debounce': {'x': -1}},
        {'observe': 'x'},
        {'observe': ['x'], 'model': 'tree'},
        {'observe': ['x'], 'bubble_mode': 'always'},
        {'observe': ['moves']},
        {'observe': ['x'], 'coalesce': ['fly']},
        {'observe': ['x'], 'keys': {'undo': ['Ctrl+Y']}},
    ])
    def test_invalid_options_fail_at_construction(self, scheduler, options):
        """Test that bad options raise InvalidConfiguration immediately."""
        with pytest.raises(InvalidConfiguration):
            Rewindable(Tile(), options)

    def test_no_snapshot_source(self, scheduler):
        class Plain:
            pass

        with pytest.raises(InvalidConfiguration):
            Rewindable(Plain())

    def test_class_level_options(self, scheduler):
        """Test that rewind_options on the host class is used by default."""
        class Knob(Tile):
            rewind_options = RewindOptions(observe=('x',))

        knob = Knob()
        Rewindable(knob)
        knob.x = 3
        assert rw(knob).history == ({'x': 0}, {'x': 3})

    def test_double_attach_rejected(self, tile):
        with pytest.raises(InvalidConfiguration):
            Rewindable(tile, {'observe': ['x']})


class TestDestroy:

    def test_destroy_cancels_pending_timers(self, scheduler):
        """Test that destroy cancels debounce timers synchronously."""
        t = Tile()
        Rewindable(t, {'observe': ['x'], 'debounce': {'x': 50}, 'coalesce': ['move']})
        handle = get_rewindable(t)
        t.x = 4
        assert scheduler.pending == 1
        handle.destroy()
        assert scheduler.pending == 0
        assert handle.destroyed
        assert get_rewindable(t) is None

    def test_destroy_unwraps_coalesced_methods(self, tile):
        handle = rw(tile)
        handle.destroy()
        tile.move(1, 1)
        tile.x = 5
        assert handle.history_length == 0
        assert tile.move.__func__ is Tile.move

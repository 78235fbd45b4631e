"""Pytest configuration and shared fixtures."""
import pytest

from rewindstate import (
    ManualScheduler,
    Rewindable,
    RewindableComposite,
    get_rewindable,
    observed,
)
import rewindstate.config as config_module


class Tile:
    """Leaf entity used across tests."""
    x = observed(0)
    y = observed(0)
    label = observed("")

    def __init__(self, x=0, y=0, label=""):
        self.x = x
        self.y = y
        self.label = label
        self.moves = 0

    def move(self, dx, dy):
        self.x += dx
        self.y += dy
        self.moves += 1


class Board:
    """Composite host: owns tiles through its create/remove hooks."""
    title = observed("board")

    def __init__(self, scheduler, **tile_options):
        self.scheduler = scheduler
        self.tile_options = tile_options or {'observe': ['x', 'y', 'label']}
        self.live_tiles = []
        self.removed = []
        self.fail_create = False
        # Number of creations allowed before the factory starts failing
        self.creates_left = None

    def create_tile(self, initial_state, child_type):
        if self.fail_create or self.creates_left == 0:
            raise RuntimeError("tile factory is offline")
        if self.creates_left is not None:
            self.creates_left -= 1
        tile = Tile(**(initial_state or {}))
        Rewindable(tile, self.tile_options, scheduler=self.scheduler)
        self.live_tiles.append(tile)
        return tile

    def remove_tile(self, tile):
        self.removed.append(tile)
        if tile in self.live_tiles:
            self.live_tiles.remove(tile)


@pytest.fixture(autouse=True)
def reset_rewind_defaults():
    """Restore process-wide defaults after each test."""
    original_scheduler = config_module._default_scheduler
    original_model = config_module._default_model

    yield

    config_module._default_scheduler = original_scheduler
    config_module._default_model = original_model


@pytest.fixture
def scheduler():
    """Manual scheduler, also installed as the process default."""
    manual = ManualScheduler()
    config_module.set_default_scheduler(manual)
    return manual


@pytest.fixture
def tile(scheduler):
    """Tile with x/y/label observed and move() coalesced."""
    t = Tile()
    Rewindable(t, {'observe': ['x', 'y', 'label'], 'coalesce': ['move']}, rewind_id="tile")
    return t


@pytest.fixture
def make_board(scheduler):
    """Factory for a board composite with tiles t1 (pos 0) and t2 (pos 1)."""
    def factory(bubble_mode="never", model="linear", tiles=("t1", "t2")):
        board = Board(scheduler)
        children = []
        for i, tile_id in enumerate(tiles):
            tile = Tile(x=i * 10, label=tile_id)
            Rewindable(tile, board.tile_options, rewind_id=tile_id)
            board.live_tiles.append(tile)
            children.append((tile_id, tile))
        RewindableComposite(
            board,
            {'observe': ['title'], 'bubble_mode': bubble_mode, 'model': model},
            rewind_id="board",
            create_child=board.create_tile,
            remove_child=board.remove_tile,
            children=children,
        )
        return board
    return factory


def rw(obj):
    """Shorthand for the Rewindable attached to obj."""
    return get_rewindable(obj)

"""
Tests for group and component ordering and sync-wave computation
"""

# Standard
import random

# Third Party
import pytest

# Local
from appbundle.bundle import Component, Group
from appbundle.ordering import (
    compute_sync_wave,
    gate_sync_wave,
    ordered_components,
    sort_components,
    sort_groups,
)
from appbundle.test_helpers.helpers import library_config


def make_groups():
    return [
        Group(
            name="app",
            order=1,
            components=[Component(name="web", order=1), Component(name="db", order=0)],
        ),
        Group(name="infra", order=0, components=[Component(name="ns", order=0)]),
    ]


def test_sort_groups():
    """Make sure groups sort by order and the input is not modified"""
    groups = make_groups()
    assert [group.name for group in sort_groups(groups)] == ["infra", "app"]
    assert [group.name for group in groups] == ["app", "infra"]


def test_sort_components_reverse():
    """Make sure components can be sorted in cleanup order"""
    comps = make_groups()[0].components
    assert [comp.name for comp in sort_components(comps)] == ["db", "web"]
    assert [comp.name for comp in sort_components(comps, reverse=True)] == [
        "web",
        "db",
    ]


def test_ordered_components():
    """Make sure the full traversal walks groups then components"""
    groups = make_groups()
    assert [(g.name, c.name) for g, c in ordered_components(groups)] == [
        ("infra", "ns"),
        ("app", "db"),
        ("app", "web"),
    ]
    assert [(g.name, c.name) for g, c in ordered_components(groups, reverse=True)] == [
        ("app", "web"),
        ("app", "db"),
        ("infra", "ns"),
    ]


def test_compute_sync_wave():
    """Make sure the wave combines the group and component orders"""
    assert compute_sync_wave(Group(name="g", order=0), Component(name="c")) == 0
    assert (
        compute_sync_wave(Group(name="g", order=1), Component(name="c", order=0))
        == 100
    )
    assert (
        compute_sync_wave(Group(name="g", order=3), Component(name="c", order=42))
        == 342
    )


def test_gate_sync_wave():
    """Make sure the gate sits after the group's components and before the
    next group
    """
    group = Group(name="g", order=2, components=[Component(name="c", order=98)])
    assert gate_sync_wave(group) == 299
    assert compute_sync_wave(group, group.components[0]) < gate_sync_wave(group)
    assert gate_sync_wave(group) < compute_sync_wave(
        Group(name="next", order=3), Component(name="first", order=0)
    )
    with library_config(gate={"wave_offset": 50}):
        assert gate_sync_wave(group) == 250


@pytest.mark.parametrize("seed", range(5))
def test_lower_group_waves_always_smaller(seed):
    """For groups with fewer than 100 components, every wave of a lower
    ordered group is smaller than every wave of a higher ordered group
    """
    rng = random.Random(seed)
    low = Group(
        name="low",
        order=rng.randint(0, 10),
        components=[Component(name=str(i), order=rng.randint(0, 99)) for i in range(20)],
    )
    high = Group(
        name="high",
        order=low.order + rng.randint(1, 10),
        components=[Component(name=str(i), order=rng.randint(0, 99)) for i in range(20)],
    )
    low_waves = [compute_sync_wave(low, comp) for comp in low.components]
    high_waves = [compute_sync_wave(high, comp) for comp in high.components]
    assert max(low_waves) < min(high_waves)

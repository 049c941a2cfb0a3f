"""
The ordering protocol: how groups and components are sequenced and how their
sync-wave hints are derived.

Groups are sorted by their order and components by their order within the
group. Both sorts are stable, so entries sharing an order keep their input
order. No further meaning is given to ties.
"""

# Standard
from typing import Iterator, List, Tuple

# Local
from . import config, constants
from .bundle import Component, Group


def sort_groups(groups: List[Group], reverse: bool = False) -> List[Group]:
    """Sort groups by order without modifying the input list"""
    return sorted(groups, key=lambda group: group.order, reverse=reverse)


def sort_components(
    components: List[Component], reverse: bool = False
) -> List[Component]:
    """Sort components by order without modifying the input list"""
    return sorted(components, key=lambda comp: comp.order, reverse=reverse)


def compute_sync_wave(group: Group, component: Component) -> int:
    """Compute the sync wave for a component:

        wave = group.order * WAVES_PER_GROUP + component.order

    Waves of a lower-ordered group are all smaller than those of a
    higher-ordered group only while component orders stay below
    WAVES_PER_GROUP. This is not enforced.
    """
    return group.order * constants.WAVES_PER_GROUP + component.order


def gate_sync_wave(group: Group) -> int:
    """Compute the wave for the wait gate of a group. It sits after every
    component wave of the group and before the first wave of the next group.
    """
    return group.order * constants.WAVES_PER_GROUP + config.gate.wave_offset


def ordered_components(
    groups: List[Group], reverse: bool = False
) -> Iterator[Tuple[Group, Component]]:
    """Iterate over (group, component) pairs in deployment order, or in
    cleanup order when reverse is set
    """
    for group in sort_groups(groups, reverse=reverse):
        for component in sort_components(group.components, reverse=reverse):
            yield group, component

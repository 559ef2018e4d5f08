import dataclasses
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from paint_core.color_space import normalize_hex

logger = logging.getLogger(__name__)


@dataclass
class Surface:
    """
    A painted region ("wall"). Pixel membership is fixed at creation;
    only color, enabled and group_id change afterwards.
    """
    id: str
    pixels: np.ndarray
    color: str
    enabled: bool = True
    group_id: Optional[str] = None

    @property
    def size(self):
        return int(self.pixels.size)


@dataclass
class Group:
    id: str
    name: str
    color: str


@dataclass(frozen=True)
class SurfaceState:
    """Point-in-time copy of surfaces and groups, used by history."""
    surfaces: tuple
    groups: tuple
    next_surface: int
    next_group: int


def _freeze_pixels(pixels):
    arr = np.unique(np.asarray(pixels, dtype=np.int64).ravel()).astype(np.uint32)
    arr.setflags(write=False)
    return arr


class SurfaceManager:
    """Owns the session's surfaces (in creation order) and groups."""

    def __init__(self):
        self._surfaces: List[Surface] = []
        self._groups: Dict[str, Group] = {}
        self._next_surface = 1
        self._next_group = 1

    @property
    def surfaces(self):
        return list(self._surfaces)

    @property
    def groups(self):
        return list(self._groups.values())

    def __len__(self):
        return len(self._surfaces)

    # --- Surfaces ---

    def get_surface(self, surface_id):
        for surface in self._surfaces:
            if surface.id == surface_id:
                return surface
        raise KeyError(f"Unknown surface: {surface_id!r}")

    def add_surface(self, pixels, color, group_id=None):
        color = normalize_hex(color)
        if group_id is not None:
            # Members always share their group's color
            color = self.get_group(group_id).color
        surface = Surface(
            id=f"wall-{self._next_surface}",
            pixels=_freeze_pixels(pixels),
            color=color,
            group_id=group_id,
        )
        self._next_surface += 1
        self._surfaces.append(surface)
        logger.info(f"Added {surface.id} ({surface.size} px, {surface.color})")
        return surface

    def remove_surface(self, surface_id):
        surface = self.get_surface(surface_id)
        self._surfaces.remove(surface)
        return surface

    def toggle_surface(self, surface_id):
        surface = self.get_surface(surface_id)
        surface.enabled = not surface.enabled
        return surface

    def set_surface_color(self, surface_id, color):
        """Recolor one surface. A grouped surface leaves its group first."""
        surface = self.get_surface(surface_id)
        surface.color = normalize_hex(color)
        if surface.group_id is not None:
            logger.info(f"{surface.id} left {surface.group_id} to take its own color")
            surface.group_id = None
        return surface

    def assign_to_group(self, surface_id, group_id):
        """Move a surface into a group (taking its color) or out with None."""
        surface = self.get_surface(surface_id)
        if group_id is None:
            surface.group_id = None
            return surface
        group = self.get_group(group_id)
        surface.group_id = group.id
        surface.color = group.color
        return surface

    def surfaces_in_group(self, group_id):
        return [s for s in self._surfaces if s.group_id == group_id]

    def ungrouped_surfaces(self):
        return [s for s in self._surfaces if s.group_id is None]

    # --- Groups ---

    def get_group(self, group_id):
        try:
            return self._groups[group_id]
        except KeyError:
            raise KeyError(f"Unknown group: {group_id!r}") from None

    def _validate_name(self, name, exclude_id=None):
        name = (name or "").strip()
        if not name:
            raise ValueError("Group name must not be empty")
        for group in self._groups.values():
            if group.id != exclude_id and group.name == name:
                raise ValueError(f"A group named {name!r} already exists")
        return name

    def add_group(self, name, color="#ffffff"):
        group = Group(
            id=f"group-{self._next_group}",
            name=self._validate_name(name),
            color=normalize_hex(color),
        )
        self._next_group += 1
        self._groups[group.id] = group
        return group

    def rename_group(self, group_id, name):
        group = self.get_group(group_id)
        group.name = self._validate_name(name, exclude_id=group_id)
        return group

    def set_group_color(self, group_id, color):
        """Change a group's color and cascade it to every member surface."""
        group = self.get_group(group_id)
        group.color = normalize_hex(color)
        members = self.surfaces_in_group(group_id)
        for surface in members:
            surface.color = group.color
        logger.info(f"{group.name}: color {group.color} applied to {len(members)} surface(s)")
        return members

    def remove_group(self, group_id):
        group = self._groups.pop(self.get_group(group_id).id)
        for surface in self.surfaces_in_group(group_id):
            surface.group_id = None
        return group

    # --- State ---

    def clear(self):
        self._surfaces = []
        self._groups = {}
        self._next_surface = 1
        self._next_group = 1

    def snapshot(self):
        return SurfaceState(
            surfaces=tuple(dataclasses.replace(s) for s in self._surfaces),
            groups=tuple(dataclasses.replace(g) for g in self._groups.values()),
            next_surface=self._next_surface,
            next_group=self._next_group,
        )

    def restore(self, state):
        self._surfaces = [dataclasses.replace(s) for s in state.surfaces]
        self._groups = {g.id: dataclasses.replace(g) for g in state.groups}
        self._next_surface = state.next_surface
        self._next_group = state.next_group

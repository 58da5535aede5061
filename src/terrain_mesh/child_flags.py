from __future__ import annotations

from dataclasses import dataclass

from .tile_pyramid import GeoRect


@dataclass(frozen=True)
class ChildFlags:
    """Which quadtree children of a tile overlap the dataset."""

    sw: bool = False
    nw: bool = False
    ne: bool = False
    se: bool = False

    @classmethod
    def all_set(cls, value: bool) -> "ChildFlags":
        return cls(sw=value, nw=value, ne=value, se=value)

    def any(self) -> bool:
        return self.sw or self.nw or self.ne or self.se

    def as_tuple(self) -> tuple[bool, bool, bool, bool]:
        return self.sw, self.nw, self.ne, self.se


def child_flags(tile_bounds: GeoRect, dataset_bounds: GeoRect) -> ChildFlags:
    if not dataset_bounds.overlaps(tile_bounds):
        return ChildFlags.all_set(False)
    return ChildFlags(
        sw=dataset_bounds.overlaps(tile_bounds.sw()),
        nw=dataset_bounds.overlaps(tile_bounds.nw()),
        ne=dataset_bounds.overlaps(tile_bounds.ne()),
        se=dataset_bounds.overlaps(tile_bounds.se()),
    )

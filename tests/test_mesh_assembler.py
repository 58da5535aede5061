from __future__ import annotations

import numpy as np
import pytest

from terrain_mesh.heightfield import Heightfield
from terrain_mesh.mesh_assembler import Mesh, MeshAssembler, MeshVertex, StripState, is_degenerate
from terrain_mesh.tile_pyramid import GeoRect

WEST_HALF = GeoRect(west=-180.0, south=-90.0, east=0.0, north=90.0)


def _signed_areas(mesh: Mesh) -> list[float]:
    verts, tris = mesh.as_arrays()
    areas = []
    for i, j, k in tris:
        (x0, y0), (x1, y1), (x2, y2) = verts[i, :2], verts[j, :2], verts[k, :2]
        areas.append(0.5 * ((x1 - x0) * (y2 - y0) - (y1 - y0) * (x2 - x0)))
    return areas


def _assemble(heights: np.ndarray, error: float, bounds: GeoRect) -> Mesh:
    size = heights.shape[0]
    hf = Heightfield(heights, size)
    hf.apply_error_threshold(error)
    assembler = MeshAssembler(bounds, size, hf)
    hf.generate_mesh(assembler.emit_vertex)
    return assembler.mesh


def test_strip_state_alternates_winding() -> None:
    strip = StripState()
    assert strip.push((0, 0)) is None
    assert strip.push((1, 0)) is None
    assert strip.push((0, 1)) == ((0, 0), (1, 0), (0, 1))
    assert strip.push((1, 1)) == ((0, 1), (1, 0), (1, 1))
    assert strip.push((0, 2)) == ((0, 1), (1, 1), (0, 2))

    strip.reset()
    assert strip.push((5, 5)) is None


def test_is_degenerate() -> None:
    assert is_degenerate(((0, 0), (0, 0), (1, 1)))
    assert is_degenerate(((0, 0), (1, 1), (0, 0)))
    assert not is_degenerate(((0, 0), (1, 0), (0, 1)))


def test_flat_tile_assembles_two_triangles() -> None:
    mesh = _assemble(np.zeros((3, 3), dtype=np.float32), 1.0, WEST_HALF)

    assert mesh.vertices == [
        MeshVertex(x=0.0, y=-90.0, height=0.0),
        MeshVertex(x=0.0, y=90.0, height=0.0),
        MeshVertex(x=-180.0, y=90.0, height=0.0),
        MeshVertex(x=-180.0, y=-90.0, height=0.0),
    ]
    assert mesh.indices == [0, 1, 2, 0, 2, 3]
    assert mesh.triangle_count == 2
    assert all(area > 0 for area in _signed_areas(mesh))


def test_fully_refined_3x3_tile() -> None:
    heights = np.array([[0, 5, 0], [5, 10, 5], [0, 5, 0]], dtype=np.float32)
    mesh = _assemble(heights, 1.0, WEST_HALF)

    assert len(mesh.vertices) == 9
    assert mesh.triangle_count == 8
    areas = _signed_areas(mesh)
    assert all(area > 0 for area in areas)
    assert sum(areas) == pytest.approx(180.0 * 180.0)


def test_vertex_heights_and_positions_follow_the_grid() -> None:
    heights = np.array([[0, 5, 0], [5, 10, 5], [0, 5, 0]], dtype=np.float32)
    bounds = GeoRect(west=10.0, south=20.0, east=12.0, north=22.0)
    mesh = _assemble(heights, 1.0, bounds)

    by_position = {(v.x, v.y): v.height for v in mesh.vertices}
    assert by_position[(11.0, 21.0)] == 10.0
    assert by_position[(11.0, 22.0)] == 5.0
    assert by_position[(10.0, 20.0)] == 0.0
    assert len(by_position) == len(mesh.vertices)


def test_random_tile_is_a_proper_ccw_triangulation() -> None:
    rng = np.random.default_rng(5)
    heights = rng.normal(0.0, 30.0, size=(17, 17)).astype(np.float32)
    bounds = GeoRect(west=100.0, south=30.0, east=101.0, north=31.0)
    mesh = _assemble(heights, 20.0, bounds)

    verts, tris = mesh.as_arrays()
    assert verts.shape[1] == 3
    assert tris.shape[1] == 3
    assert int(tris.max()) < len(mesh.vertices)
    assert len({(v.x, v.y) for v in mesh.vertices}) == len(mesh.vertices)

    areas = _signed_areas(mesh)
    assert all(area > 0 for area in areas)
    assert sum(areas) == pytest.approx(1.0)


def test_assembler_reset_and_cell_size() -> None:
    hf = Heightfield(np.zeros((5, 5), dtype=np.float32), 5)
    hf.apply_error_threshold(1.0)
    assembler = MeshAssembler(GeoRect(west=0.0, south=0.0, east=4.0, north=2.0), 5, hf)
    assert assembler.cell_size == (1.0, 0.5)
    assert assembler.to_geographic(4, 4) == (4.0, 0.0)

    hf.generate_mesh(assembler.emit_vertex)
    assert not assembler.mesh.is_empty()

    assembler.reset()
    assert assembler.mesh.is_empty()
    assert assembler.mesh.vertices == []


def test_assembler_rejects_tiny_tile_size() -> None:
    hf = Heightfield(np.zeros((3, 3), dtype=np.float32), 3)
    with pytest.raises(ValueError):
        MeshAssembler(WEST_HALF, 1, hf)


def test_empty_mesh_as_arrays() -> None:
    verts, tris = Mesh().as_arrays()
    assert verts.shape == (0, 3)
    assert tris.shape == (0, 3)


def test_degenerate_emission_yields_an_empty_mesh() -> None:
    hf = Heightfield(np.zeros((3, 3), dtype=np.float32), 3)
    assembler = MeshAssembler(WEST_HALF, 3, hf)
    for vertex in ((0, 0), (0, 0), (2, 2), (2, 2), (2, 2)):
        assembler.emit_vertex(*vertex)
    assert assembler.mesh.is_empty()
    assert assembler.mesh.triangle_count == 0
    assert assembler.mesh.vertices == []

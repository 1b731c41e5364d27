from __future__ import annotations

import math
import operator
import threading

import numpy as np
import pytest

from multifield import (
    FieldConfig,
    FieldEngine,
    FieldError,
    FieldStrategy,
    InvalidConfiguration,
    InvalidLocation,
    MissingArithmetic,
    gravity_strategy,
    scalar_strategy,
    shell_cells,
    vector_strategy,
)


def constant_vector_field(resolution: float = 1.0, rng: float = 8.0) -> FieldEngine:
    return FieldEngine(FieldConfig(resolution, rng, dim=2), vector_strategy(lambda off, p: (1.0, 1.0), 2))


def counting_field(resolution: float = 1.0, rng: float = 32.0) -> FieldEngine:
    # integer contributions keep every sum exact
    strategy = FieldStrategy(evaluate=lambda off, p: 1, combine=operator.add, zero=0, subtract=operator.sub)
    return FieldEngine(FieldConfig(resolution, rng, dim=2), strategy)


def make_cloud(n: int, seed: int = 0, scale: float = 20.0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.uniform(-scale, scale, size=(n, 2))


def test_scenario_single_level_contribution() -> None:
    fld = constant_vector_field()
    fld.add_particle((0.0, 0.0))
    assert np.array_equal(fld.value((5.0, 5.0)), [1.0, 1.0])
    assert np.array_equal(fld.value((100.0, 100.0)), [0.0, 0.0])


def test_lone_particle_values_are_zero_or_one() -> None:
    fld = counting_field()
    src = np.array([0.3, -0.6])
    fld.add_particle(src)
    xs = np.linspace(-60.0, 60.0, 97)
    for x in xs:
        for y in xs[::4]:
            assert fld.value((x, y)) in (0, 1)
    # outside the near zone and well inside range, exactly one level answers
    for theta in np.linspace(0.0, 2.0 * np.pi, 24, endpoint=False):
        for d in (3.0, 4.5, 6.0):
            q = src + d * np.array([math.cos(theta), math.sin(theta)])
            assert fld.value(q) == 1


def test_grid_cells_written_match_shells() -> None:
    fld = counting_field(rng=16.0)
    loc = np.array([2.2, -7.9])
    fld.add_particle(loc)
    for l in fld.levels:
        expected = set(shell_cells(loc, l, fld.levels, max_distance=16.0))
        assert {cell for cell, _ in fld.grids[l].items()} == expected


def test_far_particle_does_not_reach() -> None:
    only_a = constant_vector_field()
    only_a.add_particle((0.0, 0.0))
    both = constant_vector_field()
    both.add_particle((0.0, 0.0))
    both.add_particle((100.0, 100.0))
    for q in [(3.5, 0.5), (-4.0, 2.0), (6.0, -6.0), (1.0, 7.5)]:
        assert np.array_equal(both.value(q), only_a.value(q))


@pytest.mark.parametrize("angle", np.linspace(0.0, 2.0 * np.pi, 16, endpoint=False))
def test_out_of_range_is_zero(angle: float) -> None:
    rng = 8.0
    fld = FieldEngine(FieldConfig(1.0, rng), scalar_strategy(lambda off, p: 1.0))
    src = np.array([0.3, 0.4])
    fld.add_particle(src)
    q = src + 2.0 * rng * np.array([math.cos(angle), math.sin(angle)])
    assert fld.value(q) == 0.0


def test_determinism() -> None:
    x = make_cloud(300, seed=4)
    masses = np.random.default_rng(5).uniform(0.5, 2.0, size=300)
    a = FieldEngine(FieldConfig(0.5, 16.0), gravity_strategy(2, softening=0.1))
    b = FieldEngine(FieldConfig(0.5, 16.0), gravity_strategy(2, softening=0.1))
    for xi, mi in zip(x, masses):
        a.add_particle(xi, mi)
        b.add_particle(xi, mi)
    xq = make_cloud(50, seed=6, scale=25.0)
    assert np.array_equal(a.values(xq), b.values(xq))


def test_superposition() -> None:
    strategy = gravity_strategy(2)
    cfg = FieldConfig(1.0, 8.0)
    A, B = (0.5, 0.5), (40.5, 40.5)
    fa = FieldEngine(cfg, strategy)
    fa.add_particle(A, 2.0)
    fb = FieldEngine(cfg, strategy)
    fb.add_particle(B, 3.0)
    fab = FieldEngine(cfg, strategy)
    fab.add_particle(A, 2.0)
    fab.add_particle(B, 3.0)
    for q in [(4.0, 1.0), (38.0, 44.0), (20.0, 20.0), (-3.0, 5.5), (45.0, 36.0)]:
        assert np.allclose(fab.value(q), strategy.combine(fa.value(q), fb.value(q)), rtol=1e-12, atol=0.0)


@pytest.mark.parametrize("bad", [(math.nan, 0.0), (0.0, math.inf), (1.0, 2.0, 3.0), (1.0,), "xy"])
def test_invalid_location_is_atomic(bad) -> None:
    fld = counting_field()
    fld.add_particle((1.0, 1.0))
    before = fld.diagnostics()
    with pytest.raises(InvalidLocation):
        fld.add_particle(bad)
    with pytest.raises(InvalidLocation):
        fld.value(bad)
    assert fld.diagnostics() == before


def test_failing_value_function_leaves_field_unchanged() -> None:
    calls = {"n": 0}

    def flaky(offset: np.ndarray, props: object) -> float:
        calls["n"] += 1
        if calls["n"] > 5:
            raise RuntimeError("boom")
        return 1.0

    fld = FieldEngine(FieldConfig(1.0, 16.0), scalar_strategy(flaky))
    with pytest.raises(RuntimeError):
        fld.add_particle((0.0, 0.0))
    assert fld.num_particles == 0
    assert all(len(g) == 0 for g in fld.grids)


def test_batch_insert_matches_sequential() -> None:
    x = make_cloud(200, seed=1)
    m = np.arange(1, 201)
    seq = counting_field()
    for xi, mi in zip(x, m):
        seq.add_particle(xi, mi)
    batch = counting_field()
    batch.add_particles(x, m)
    assert batch.num_particles == 200
    xq = make_cloud(40, seed=2, scale=30.0)
    assert np.array_equal(batch.values(xq), seq.values(xq))


def test_batch_insert_is_atomic() -> None:
    fld = counting_field()
    x = make_cloud(10, seed=3)
    x[7, 1] = math.nan
    with pytest.raises(InvalidLocation):
        fld.add_particles(x)
    assert fld.num_particles == 0
    assert fld.diagnostics()["total_cells"] == 0
    with pytest.raises(ValueError):
        fld.add_particles(make_cloud(4), properties=[1.0, 2.0])


def test_remove_particle_restores_field() -> None:
    x = make_cloud(30, seed=8)
    full = counting_field()
    full.add_particles(x)
    full.add_particle((3.3, -4.4), "extra")
    full.remove_particle((3.3, -4.4), "extra")
    ref = counting_field()
    ref.add_particles(x)
    xq = make_cloud(60, seed=9, scale=35.0)
    assert np.array_equal(full.values(xq), ref.values(xq))
    assert full.num_particles == 30
    assert all(p.properties != "extra" for p in full.near_particles((3.3, -4.4)))


def test_remove_requires_subtract_and_a_match() -> None:
    strategy = FieldStrategy(evaluate=lambda off, p: 1.0, combine=operator.add, zero=0.0)
    fld = FieldEngine(FieldConfig(1.0, 8.0), strategy)
    fld.add_particle((0.0, 0.0))
    with pytest.raises(MissingArithmetic):
        fld.remove_particle((0.0, 0.0))

    other = counting_field()
    other.add_particle((0.0, 0.0), 1.0)
    with pytest.raises(FieldError):
        other.remove_particle((0.0, 0.0), 2.0)
    with pytest.raises(FieldError):
        other.remove_particle((5.0, 5.0), 1.0)
    assert other.num_particles == 1


def test_near_particles() -> None:
    fld = counting_field()
    fld.add_particle((0.5, 0.5), "a")
    fld.add_particle((10.5, 0.5), "b")
    assert [p.properties for p in fld.near_particles((1.5, 0.5))] == ["a"]
    assert [p.properties for p in fld.near_particles((9.7, 1.2))] == ["b"]
    assert fld.near_particles((3.5, 0.5)) == []


def test_coincident_bucket() -> None:
    fld = FieldEngine(FieldConfig(1.0, 8.0), scalar_strategy(lambda off, p: 1.0, coincident=lambda p: 10.0))
    fld.add_particle((0.5, 0.5))
    assert fld.value((0.6, 0.6)) == 10.0
    assert fld.value((0.0, 0.99)) == 10.0
    assert fld.value((1.5, 0.5)) == 0.0


def test_value_function_never_sees_short_offsets() -> None:
    seen: list[float] = []

    def record(offset: np.ndarray, props: object) -> float:
        seen.append(float(np.linalg.norm(offset)))
        return 1.0

    fld = FieldEngine(FieldConfig(0.5, 20.0), scalar_strategy(record))
    fld.add_particles(make_cloud(25, seed=11))
    assert seen
    assert min(seen) >= 0.5


def test_values_shapes() -> None:
    vec = constant_vector_field()
    vec.add_particle((0.0, 0.0))
    assert vec.values(np.zeros((5, 2))).shape == (5, 2)
    sca = counting_field()
    sca.add_particle((0.0, 0.0))
    assert sca.values(np.ones((7, 2))).shape == (7,)


def test_three_dimensional_field() -> None:
    fld = FieldEngine(FieldConfig(1.0, 16.0, dim=3), gravity_strategy(3))
    fld.add_particle((0.2, 0.1, -0.3), 5.0)
    a = fld.value((6.0, 0.0, 0.0))
    assert a.shape == (3,)
    assert a[0] < 0.0
    with pytest.raises(InvalidLocation):
        fld.value((1.0, 2.0))


def test_concurrent_inserts_match_sequential() -> None:
    x = make_cloud(400, seed=12)
    seq = counting_field()
    seq.add_particles(x)
    par = counting_field()

    def worker(chunk: np.ndarray) -> None:
        for xi in chunk:
            par.add_particle(xi)

    threads = [threading.Thread(target=worker, args=(c,)) for c in np.array_split(x, 8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert par.num_particles == 400
    xq = make_cloud(50, seed=13, scale=30.0)
    assert np.array_equal(par.values(xq), seq.values(xq))


def test_sample_grid_and_diagnostics() -> None:
    fld = constant_vector_field()
    fld.add_particle((0.0, 0.0))
    X, Y, F = fld.sample_grid(-10.0, 10.0, -5.0, 5.0, 21, 11)
    assert X.shape == Y.shape == (11, 21)
    assert F.shape == (11, 21, 2)
    d = fld.diagnostics()
    assert d["num_particles"] == 1
    assert d["num_levels"] == 4
    assert d["widths"] == (1.0, 2.0, 4.0, 8.0)
    assert d["total_cells"] == sum(d["cells_per_level"]) > 0

    fld3 = FieldEngine(FieldConfig(1.0, 8.0, dim=3), vector_strategy(lambda off, p: off, 3))
    with pytest.raises(ValueError):
        fld3.sample_grid(0, 1, 0, 1, 2, 2)


def test_construction_errors() -> None:
    with pytest.raises(InvalidConfiguration):
        FieldConfig(0.0, 1.0)
    with pytest.raises(InvalidConfiguration):
        FieldConfig(1.0, 0.5)
    with pytest.raises(InvalidConfiguration):
        FieldConfig(1.0, 8.0, dim=0)
    with pytest.raises(InvalidConfiguration):
        FieldConfig(1.0, 8.0, near_radius=0)
    with pytest.raises(InvalidConfiguration):
        FieldEngine({"resolution": 1.0, "range": 8.0}, scalar_strategy(lambda off, p: 1.0))  # type: ignore[arg-type]
    with pytest.raises(MissingArithmetic):
        FieldStrategy(evaluate=lambda off, p: 1.0, combine=None, zero=0.0)  # type: ignore[arg-type]
    with pytest.raises(MissingArithmetic):
        FieldStrategy(evaluate=lambda off, p: 1.0, combine=operator.add, zero=None)
    with pytest.raises(MissingArithmetic):
        FieldEngine(FieldConfig(1.0, 8.0), object())  # type: ignore[arg-type]


@pytest.mark.parametrize("bad", [None, "abc", (1.0, 2.0)])
def test_config_rejects_non_numeric_geometry(bad) -> None:
    with pytest.raises(InvalidConfiguration):
        FieldConfig(bad, 8.0)
    with pytest.raises(InvalidConfiguration):
        FieldConfig(1.0, bad)


def test_config_edits_after_construction_are_ignored() -> None:
    cfg = FieldConfig(1.0, 32.0)
    strategy = FieldStrategy(evaluate=lambda off, p: 1, combine=operator.add, zero=0, subtract=operator.sub)
    fld = FieldEngine(cfg, strategy)
    fld.add_particle((0.5, 0.5))
    cfg.near_radius = 2
    cfg.dim = 3
    assert fld.dim == 2
    assert fld.config.near_radius == 1
    fld.add_particle((4.5, -2.5))
    fld.remove_particle((4.5, -2.5))
    assert fld.value((8.0, 8.0)) == 1
    assert len(fld.near_particles((2.6, 0.5))) == 0
    fld.remove_particle((0.5, 0.5))
    _, _, F = fld.sample_grid(-20.0, 20.0, -20.0, 20.0, 41, 41)
    assert np.all(F == 0)
    # the returned config is a copy
    fld.config.near_radius = 3
    assert fld.config.near_radius == 1


def test_range_cutoff_is_soft_by_half_a_cell() -> None:
    rng = 8.0
    fld = counting_field(rng=rng)
    fld.add_particle((0.0, 0.0))
    # 8.81 from the source, inside a width-4 cell whose midpoint is 6.32 away
    assert math.hypot(-7.9, 3.9) > rng
    assert fld.value((-7.9, 3.9)) == 1
    # nothing reaches past range plus half the diagonal of the widest shell level
    widest = fld.levels.width(fld.levels.coarsest - 1)
    reach = rng + widest * math.sqrt(2.0) / 2.0
    for theta in np.linspace(0.0, 2.0 * np.pi, 64, endpoint=False):
        q = (reach + 0.01) * np.array([math.cos(theta), math.sin(theta)])
        assert fld.value(q) == 0


def test_coarsest_level_is_never_written() -> None:
    fld = counting_field(rng=16.0)
    fld.add_particles(make_cloud(200, seed=31, scale=10.0))
    L = fld.levels.coarsest
    assert len(fld.grids[L]) == 0
    cells = fld.diagnostics()["cells_per_level"]
    assert len(cells) == L + 1
    assert cells[-1] == 0
    assert all(n > 0 for n in cells[:-1])


def test_single_level_field_keeps_coincident_bucket() -> None:
    s = scalar_strategy(lambda off, p: 1.0, coincident=lambda p: 5.0)
    fld = FieldEngine(FieldConfig(2.0, 2.0), s)
    assert fld.levels.coarsest == 0
    fld.add_particle((0.5, 0.5))
    assert fld.value((1.9, 0.1)) == 5.0
    assert fld.value((2.1, 0.1)) == 0.0

# Filter behaviour checks: motion, observation, resampling, pose estimate.
import math
import random

import pytest

from .config import DEFAULT_CONFIG
from .geom import angle_diff
from .particle_filter import (
    FilterParams, Particle, ParticleFilter,
    STATUS_COLLAPSED, STATUS_GATED, STATUS_IGNORED, STATUS_MOVED,
    STATUS_RESAMPLED, STATUS_RESET, STATUS_UPDATED,
)
from .sim import SimRobot, simulate_scan
from .vector_map import MapLoadError, VectorMap

LIDAR = {
    "num_ranges": 100,
    "range_min": 0.02,
    "range_max": 10.0,
    "angle_min": -math.pi / 2,
    "angle_max": math.pi / 2,
}


class _ZeroNoise:
    """Generator stand-in: every draw returns its mean / lower bound."""

    def gauss(self, mu, sigma):
        return mu

    def uniform(self, a, b):
        return a

    def random(self):
        return 0.0


def _box_map():
    return VectorMap.from_segments([
        (0.0, 0.0, 10.0, 0.0),
        (10.0, 0.0, 10.0, 8.0),
        (10.0, 8.0, 0.0, 8.0),
        (0.0, 8.0, 0.0, 0.0),
    ])


def _laser(pf, ranges):
    return pf.observe_laser(ranges, LIDAR["range_min"], LIDAR["range_max"],
                            LIDAR["angle_min"], LIDAR["angle_max"])


def _ready_filter(n=50, seed=7, rng=None):
    """Initialized filter with odometry bookkeeping primed at the origin."""
    pf = ParticleFilter(FilterParams(num_particles=n), rng=rng or random.Random(seed))
    pf.initialize(_box_map(), (5.0, 4.0), 0.0)
    assert pf.observe_odometry((0.0, 0.0), 0.0) == STATUS_RESET
    return pf


def test_initialize_draws_n_particles_around_pose():
    pf = ParticleFilter(rng=random.Random(1))
    pf.initialize(_box_map(), (5.0, 4.0), 0.5)
    parts = pf.get_particles()
    assert len(parts) == 50
    assert all(p.log_weight == 0.0 for p in parts)
    mx = sum(p.loc[0] for p in parts) / len(parts)
    my = sum(p.loc[1] for p in parts) / len(parts)
    mth = sum(p.angle for p in parts) / len(parts)
    assert abs(mx - 5.0) < 0.2 and abs(my - 4.0) < 0.2, (mx, my)
    assert abs(mth - 0.5) < 0.3, mth
    assert not pf.odom_initialized


def test_initialize_loads_named_map(tmp_path):
    (tmp_path / "room.txt").write_text("0,0,4,0\n4,0,4,4\n4,4,0,4\n0,4,0,0\n", encoding="utf-8")
    pf = ParticleFilter(rng=random.Random(2), maps_dir=str(tmp_path))
    pf.initialize("room", (2.0, 2.0), 0.0)
    assert len(pf.map) == 4
    assert pf.map.name == "room"


def test_calls_before_initialize_are_ignored():
    pf = ParticleFilter(rng=random.Random(3))
    assert pf.observe_odometry((1.0, 2.0), 0.3) == STATUS_IGNORED
    assert _laser(pf, [1.0] * 100) == STATUS_IGNORED
    assert pf.resample() == STATUS_IGNORED
    assert pf.get_location() is None
    assert pf.get_particles() == []
    assert pf.prev_odom_loc == (0.0, 0.0)
    assert not pf.odom_initialized


def test_get_particles_returns_copies():
    pf = _ready_filter()
    snap = pf.get_particles()
    snap[0].loc = (99.0, 99.0)
    assert pf.particles[0].loc != (99.0, 99.0)


def test_end_to_end_zero_noise_translation():
    pf = ParticleFilter(rng=_ZeroNoise())
    pf.initialize(_box_map(), (0.0, 0.0), 0.0)
    assert pf.observe_odometry((0.0, 0.0), 0.0) == STATUS_RESET
    # A single 1.0 step counts as a jump, so (1, 0) arrives in two steps.
    assert pf.observe_odometry((0.5, 0.0), 0.0) == STATUS_MOVED
    assert pf.observe_odometry((1.0, 0.0), 0.0) == STATUS_MOVED
    for p in pf.particles:
        assert p.loc == (1.0, 0.0)
        assert p.angle == 0.0
    loc, angle = pf.get_location()
    assert loc == (1.0, 0.0)
    assert angle == 0.0


def test_odometry_jump_resets_without_moving_particles():
    pf = _ready_filter()
    before = pf.get_particles()
    assert pf.observe_odometry((1.0, 0.0), 0.0) == STATUS_RESET
    assert pf.get_particles() == before
    assert pf.prev_odom_loc == (1.0, 0.0)
    assert pf.last_update_loc == (1.0, 0.0)
    assert pf.updates_since_resample == 0
    # Just under the threshold is an ordinary motion update.
    assert pf.observe_odometry((1.99, 0.0), 0.0) == STATUS_MOVED


def test_motion_rotates_delta_into_particle_heading():
    pf = ParticleFilter(FilterParams(num_particles=2), rng=_ZeroNoise())
    pf.initialize(_box_map(), (0.0, 0.0), 0.0)
    pf.observe_odometry((0.0, 0.0), 0.0)
    pf.particles = [Particle((1.0, 1.0), math.pi / 2), Particle((3.0, 3.0), math.pi)]
    assert pf.observe_odometry((0.5, 0.0), 0.0) == STATUS_MOVED
    a, b = pf.particles
    assert a.loc == pytest.approx((1.0, 1.5))
    assert b.loc == pytest.approx((2.5, 3.0))
    assert a.angle == pytest.approx(math.pi / 2)


def test_angle_delta_is_wrapped_across_pi():
    pf = ParticleFilter(FilterParams(num_particles=1), rng=_ZeroNoise())
    pf.initialize(_box_map(), (0.0, 0.0), 0.0)
    pf.observe_odometry((0.0, 0.0), 3.1)
    pf.particles = [Particle((0.0, 0.0), 0.0)]
    pf.observe_odometry((0.0, 0.0), -3.1)
    step = 2.0 * math.pi - 6.2
    assert pf.particles[0].angle == pytest.approx(step)
    assert abs(pf.particles[0].angle) <= 2.0 * math.pi


def test_motion_noise_scales_with_movement():
    pf = _ready_filter(seed=11)
    pf.particles = [Particle((5.0, 4.0), 0.0) for _ in range(50)]
    pf.observe_odometry((0.5, 0.0), 0.0)
    xs = [p.loc[0] for p in pf.particles]
    mean = sum(xs) / len(xs)
    spread = math.sqrt(sum((x - mean) ** 2 for x in xs) / len(xs))
    # k1 * 0.5 = 0.25 expected std-dev
    assert 0.1 < spread < 0.45, spread
    assert abs(mean - 5.5) < 0.15, mean


def test_predicted_scan_hits_single_segment():
    pf = ParticleFilter(rng=random.Random(0))
    pf.map = VectorMap.from_segments([(2.0, -1.0, 2.0, 1.0)])
    pts = pf.predicted_scan((0.0, 0.0), 0.0, 10, 0.1, 5.0, 0.0, 0.0)
    assert len(pts) == 1
    assert pts[0] == pytest.approx((2.0, 0.0), abs=1e-9)

    away = pf.predicted_scan((0.0, 0.0), math.pi, 10, 0.1, 5.0, 0.0, 0.0)
    assert away[0] == pytest.approx((-5.2, 0.0), abs=1e-9)


def test_predicted_scan_keeps_nearest_hit():
    pf = ParticleFilter(rng=random.Random(0))
    pf.map = VectorMap.from_segments([(3.0, -1.0, 3.0, 1.0), (2.0, -1.0, 2.0, 1.0)])
    pts = pf.predicted_scan((0.0, 0.0), 0.0, 10, 0.1, 5.0, 0.0, 0.0)
    assert pts[0] == pytest.approx((2.0, 0.0), abs=1e-9)


def test_predicted_scan_is_downsampled_across_full_fov():
    pf = ParticleFilter(rng=random.Random(0))
    pf.map = VectorMap()
    n = 101
    pts = pf.predicted_scan((0.0, 0.0), 0.0, n, 0.1, 1.0, -math.pi / 2, math.pi / 2)
    assert len(pts) == 10
    origin = (0.2, 0.0)
    first = math.atan2(pts[0][1] - origin[1], pts[0][0] - origin[0])
    last = math.atan2(pts[-1][1] - origin[1], pts[-1][0] - origin[0])
    inc = math.pi / (n - 1)
    assert first == pytest.approx(-math.pi / 2)
    assert last == pytest.approx(-math.pi / 2 + 90 * inc)


def test_score_prefers_true_pose():
    pf = ParticleFilter(rng=random.Random(0))
    pf.map = _box_map()
    ranges = simulate_scan(pf.map, (5.0, 4.0), 0.0, LIDAR)
    truth = Particle((5.0, 4.0), 0.0)
    shifted = Particle((7.5, 5.5), 0.0)
    args = (LIDAR["range_min"], LIDAR["range_max"], LIDAR["angle_min"], LIDAR["angle_max"])
    pf.score_particle(truth, ranges, *args)
    pf.score_particle(shifted, ranges, *args)
    assert truth.log_weight == 0.0
    assert shifted.log_weight < 0.0
    assert truth.log_weight > shifted.log_weight


def test_score_clips_residuals_asymmetrically():
    pf = ParticleFilter(FilterParams(d_short=0.3, d_long=0.6, var_obs=2.0), rng=random.Random(0))
    pf.map = _box_map()
    args = (LIDAR["range_min"], LIDAR["range_max"], LIDAR["angle_min"], LIDAR["angle_max"])
    # every predicted range in this box is under 6.3, so both are clipped
    long_p = Particle((5.0, 4.0), 0.0)
    got = pf.score_particle(long_p, [9.0] * 100, *args)
    assert got == pytest.approx(-10 * 0.6 ** 2 / 2.0)
    short_p = Particle((5.0, 4.0), 0.0)
    got = pf.score_particle(short_p, [0.5] * 100, *args)
    assert got == pytest.approx(-10 * 0.3 ** 2 / 2.0)
    assert long_p.log_weight == pytest.approx(-1.8)


def test_score_skips_returns_near_sensor_limits():
    pf = ParticleFilter(rng=random.Random(0))
    pf.map = _box_map()
    args = (LIDAR["range_min"], LIDAR["range_max"], LIDAR["angle_min"], LIDAR["angle_max"])
    p = Particle((5.0, 4.0), 0.0, -1.0)
    assert pf.score_particle(p, [9.6] * 100, *args) == 0.0
    assert pf.score_particle(p, [0.02] * 100, *args) == 0.0
    assert p.log_weight == -1.0


def test_observe_laser_gates_on_displacement():
    pf = _ready_filter()
    ranges = [3.0] * 100
    assert _laser(pf, ranges) == STATUS_GATED
    pf.observe_odometry((0.05, 0.0), 0.0)
    assert _laser(pf, ranges) == STATUS_GATED
    pf.observe_odometry((0.3, 0.0), 0.0)
    assert _laser(pf, ranges) == STATUS_UPDATED
    assert pf.last_update_loc == (0.3, 0.0)
    # Two legal odometry steps but 1.2 units since the last update.
    pf.observe_odometry((0.9, 0.0), 0.0)
    pf.observe_odometry((1.5, 0.0), 0.0)
    assert _laser(pf, ranges) == STATUS_GATED
    assert pf.updates_since_resample == 1


def test_observe_laser_before_odometry_is_ignored():
    pf = ParticleFilter(rng=random.Random(0))
    pf.initialize(_box_map(), (5.0, 4.0), 0.0)
    assert _laser(pf, [3.0] * 100) == STATUS_IGNORED


def test_observe_laser_tracks_max_log_weight():
    pf = _ready_filter()
    pf.observe_odometry((0.3, 0.0), 0.0)
    ranges = simulate_scan(pf.map, (5.0, 4.0), 0.0, LIDAR)
    assert _laser(pf, ranges) == STATUS_UPDATED
    assert pf.max_log_weight == max(p.log_weight for p in pf.particles)


def test_resample_every_sixth_accepted_update():
    pf = _ready_filter()
    ranges = simulate_scan(pf.map, (5.0, 4.0), 0.0, LIDAR)
    statuses = []
    for i in range(1, 13):
        pf.observe_odometry((0.2 * i, 0.0), 0.0)
        statuses.append(_laser(pf, ranges))
    assert statuses == ([STATUS_UPDATED] * 5 + [STATUS_RESAMPLED]) * 2
    assert pf.updates_since_resample == 0
    assert len(pf.particles) == 50


@pytest.mark.parametrize("n", [1, 2, 7, 50, 123])
def test_resample_keeps_exactly_n(n):
    pf = _ready_filter(n=n, seed=n)
    rng = random.Random(100 + n)
    for p in pf.particles:
        p.log_weight = -rng.uniform(0.0, 20.0)
    pf.max_log_weight = max(p.log_weight for p in pf.particles)
    assert pf.resample() == STATUS_RESAMPLED
    assert len(pf.particles) == n
    assert pf.max_log_weight == 0.0
    assert all(p.log_weight == 0.0 for p in pf.particles)


def test_resample_is_deterministic_with_seed():
    def run():
        pf = _ready_filter(seed=42)
        ranges = simulate_scan(pf.map, (5.3, 4.1), 0.1, LIDAR)
        for i in range(1, 7):
            pf.observe_odometry((0.2 * i, 0.0), 0.0)
            status = _laser(pf, ranges)
        assert status == STATUS_RESAMPLED
        return pf.get_particles()

    assert run() == run()


def test_resample_equal_weights_is_uniform():
    n = 20
    pf = _ready_filter(n=n, seed=5)
    pf.particles = [Particle((float(i), 0.0), 0.0, -3.0) for i in range(n)]
    pf.max_log_weight = -3.0
    counts = [0] * n
    rounds = 200
    for _ in range(rounds):
        assert pf.resample() == STATUS_RESAMPLED
        for p in pf.particles:
            counts[int(p.loc[0])] += 1
    expected = float(rounds)
    chi2 = sum((c - expected) ** 2 / expected for c in counts)
    # 99th percentile of chi-square with 19 dof
    assert chi2 < 36.19, counts


def test_resample_concentrates_on_dominant_particle():
    pf = _ready_filter(n=10, seed=9)
    pf.particles = [Particle((float(i), 0.0), 0.0, -50.0) for i in range(10)]
    pf.particles[3].log_weight = 0.0
    pf.max_log_weight = 0.0
    assert pf.resample() == STATUS_RESAMPLED
    assert {p.loc for p in pf.particles} == {(3.0, 0.0)}


def test_resample_collapse_is_flagged_and_set_unchanged():
    pf = _ready_filter(n=10)
    for p in pf.particles:
        p.log_weight = -1.0e4
    pf.max_log_weight = 0.0
    before = pf.get_particles()
    status = pf.resample()
    assert status == STATUS_COLLAPSED, "zero total weight must be reported as collapse"
    assert pf.get_particles() == before


def test_resample_ignored_until_odometry_initialized():
    pf = ParticleFilter(rng=random.Random(0))
    pf.initialize(_box_map(), (5.0, 4.0), 0.0)
    assert pf.resample() == STATUS_IGNORED


def test_get_location_identical_particles_any_weights():
    pf = _ready_filter()
    rng = random.Random(4)
    pf.particles = [Particle((1.3, -2.7), 0.4, -rng.uniform(0.0, 5.0)) for _ in range(50)]
    pf.max_log_weight = max(p.log_weight for p in pf.particles)
    loc, angle = pf.get_location()
    assert loc == (1.3, -2.7)
    assert angle == 0.4


def test_get_location_weighted_mean():
    pf = _ready_filter(n=2)
    pf.particles = [Particle((0.0, 0.0), 0.0, 0.0), Particle((4.0, 2.0), 1.0, math.log(3.0))]
    pf.max_log_weight = math.log(3.0)
    loc, angle = pf.get_location()
    assert loc == pytest.approx((3.0, 1.5))
    assert angle == pytest.approx(0.75)


def test_get_location_collapsed_falls_back_to_unweighted_mean():
    pf = _ready_filter(n=2)
    pf.particles = [Particle((0.0, 0.0), 0.0, -math.inf), Particle((2.0, 4.0), 1.0, -math.inf)]
    pf.max_log_weight = 0.0
    loc, angle = pf.get_location()
    assert loc == pytest.approx((1.0, 2.0))
    assert angle == pytest.approx(0.5)
    assert pf.effective_sample_size() == pytest.approx(2.0)


def test_filter_instances_do_not_share_counters():
    a = _ready_filter(seed=1)
    b = _ready_filter(seed=1)
    a.observe_odometry((0.3, 0.0), 0.0)
    assert _laser(a, [3.0] * 100) == STATUS_UPDATED
    assert a.updates_since_resample == 1
    assert b.updates_since_resample == 0
    assert b.last_update_loc == (0.0, 0.0)


def test_params_from_config_fall_back_on_bad_values():
    cfg = {"particle_filter": {"num_particles": {"value": "20"}, "var_obs": {"value": "oops"},
                               "seed": {"value": 3}}}
    params = FilterParams.from_config(cfg)
    assert params.num_particles == 20
    assert params.var_obs == 1.0
    assert params.seed == 3
    assert FilterParams.from_config(DEFAULT_CONFIG) == FilterParams()


def test_params_from_config_reject_nonphysical_values():
    cfg = {"particle_filter": {
        "var_obs": {"value": 0},
        "d_short": {"value": -0.3},
        "d_long": {"value": "nan"},
        "range_margin": {"value": -1.0},
        "k1": {"value": "inf"},
        "laser_offset": {"value": -0.1},
    }}
    params = FilterParams.from_config(cfg)
    assert params.var_obs == 1.0
    assert params.d_short == 0.5
    assert params.d_long == 0.5
    assert params.range_margin == 0.05
    assert params.k1 == 0.5
    assert params.laser_offset == -0.1, "a laser behind the center is legal"
    assert FilterParams.from_config({"particle_filter": {"var_obs": {"value": -2.0}}}).var_obs == 1.0

    # Scoring with the sanitized params must not divide by zero.
    pf = ParticleFilter(params, rng=random.Random(0))
    pf.map = _box_map()
    args = (LIDAR["range_min"], LIDAR["range_max"], LIDAR["angle_min"], LIDAR["angle_max"])
    assert pf.score_particle(Particle((5.0, 4.0), 0.0), [3.0] * 100, *args) < 0.0


def test_failed_initialize_keeps_previous_session(tmp_path):
    pf = ParticleFilter(rng=random.Random(6), maps_dir=str(tmp_path))
    pf.initialize(_box_map(), (5.0, 4.0), 0.0)
    pf.observe_odometry((0.0, 0.0), 0.0)
    before = pf.get_particles()
    old_map = pf.map
    with pytest.raises(MapLoadError):
        pf.initialize("missing", (1.0, 1.0), 0.0)
    assert pf.get_particles() == before
    assert len(pf.particles) == 50
    assert pf.map is old_map
    assert pf.odom_initialized
    assert pf.observe_odometry((0.3, 0.0), 0.0) == STATUS_MOVED
    (x, y), _ = pf.get_location()
    assert abs(x - 5.3) < 0.5 and abs(y - 4.0) < 0.5, (x, y)


def test_wrapped_odometry_delta_stays_within_pi(capsys):
    pf = ParticleFilter(FilterParams(num_particles=1), rng=_ZeroNoise())
    pf.initialize(_box_map(), (0.0, 0.0), 0.0)
    pf.observe_odometry((0.0, 0.0), 0.0)
    rng = random.Random(12)
    for _ in range(300):
        prev = rng.uniform(-20.0, 20.0)
        cur = rng.uniform(-20.0, 20.0)
        pf.prev_odom_angle = prev
        pf.particles = [Particle((0.0, 0.0), 0.0)]
        assert pf.observe_odometry((0.0, 0.0), cur) == STATUS_MOVED
        # Zero noise: the particle turns by exactly the wrapped delta.
        step = pf.particles[0].angle
        assert step == angle_diff(cur, prev)
        assert -math.pi <= step < math.pi, (prev, cur, step)
        assert math.cos(step) == pytest.approx(math.cos(cur - prev), abs=1e-9)
        assert math.sin(step) == pytest.approx(math.sin(cur - prev), abs=1e-9)
    assert "exceeds 2pi" not in capsys.readouterr().out


def test_localizes_while_driving():
    vmap = _box_map()
    robot = SimRobot((2.0, 3.0), 0.0, rng=random.Random(21), odom_sigma_xy=0.002)
    pf = ParticleFilter(rng=random.Random(22))
    pf.initialize(vmap, robot.loc, robot.angle)
    resamples = 0
    for _ in range(100):
        robot.drive(1.0, 0.1, 0.05)
        pf.observe_odometry(*robot.odometry())
        if _laser(pf, robot.scan(vmap, LIDAR, sigma=0.02)) == STATUS_RESAMPLED:
            resamples += 1
    assert resamples >= 2
    (ex, ey), _ = pf.get_location()
    err = math.hypot(ex - robot.loc[0], ey - robot.loc[1])
    assert err < 1.0, (ex, ey, robot.loc)


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-q"]))

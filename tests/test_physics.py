import math

import numpy as np
import pytest

from singing_ball.config import SimulationConfig, TuningParameters
from singing_ball.physics import BoundaryGeometry, PhysicsState, reflect


def _place(physics, center, velocity):
    physics.ball.center = np.array(center, dtype=np.float64)
    physics.ball.velocity = np.array(velocity, dtype=np.float64)


def _dist_to_center(physics):
    return math.hypot(physics.ball.center[0] - physics.boundary.cx, physics.ball.center[1] - physics.boundary.cy)


class TestGeometry:

    def test_boundary_from_surface(self):
        b = BoundaryGeometry.for_surface(1080, 1920, 125)
        assert (b.cx, b.cy, b.radius) == (540.0, 960.0, 415.0)

    def test_max_radius_is_ten_inside_ring(self, physics):
        assert physics.max_radius == pytest.approx(physics.boundary.radius - 10.0)

    def test_surface_without_room_rejected(self):
        with pytest.raises(ValueError):
            PhysicsState(100, 100, TuningParameters(), SimulationConfig(width=100, height=100))

    def test_reflect_reverses_normal_component(self):
        n = np.array([0.6, 0.8])
        v = np.array([3.0, -1.0])
        assert np.dot(reflect(v, n), n) == pytest.approx(-np.dot(v, n))


class TestUpdate:

    def test_reset_state(self, physics):
        assert physics.ball.radius == 5.0
        assert physics.ball.center.tolist() == pytest.approx([400 / 2.0, 400 / 2.7])
        assert physics.ball.velocity.tolist() == [0.8, 0.8]
        assert len(physics.trail) == 0
        assert physics.collision_marks == []

    def test_tick_without_collision_only_decays(self, physics):
        physics.tuning.set_gravity(0.0)
        _place(physics, (200.0, 200.0), (3.0, -2.0))
        speed = physics.ball.speed
        hit = physics.update()
        assert not hit
        assert physics.ball.radius == 5.0
        assert physics.ball.speed == pytest.approx(speed * physics.tuning.velocity_decay)
        assert physics.ball.center.tolist() == pytest.approx([200.0 + 3.0 * 0.9995, 200.0 - 2.0 * 0.9995])

    def test_gravity_applied_before_integration(self, physics):
        physics.tuning.velocity_decay = 1.0
        _place(physics, (200.0, 200.0), (0.0, 0.0))
        physics.update()
        assert physics.ball.velocity.tolist() == pytest.approx([0.0, 0.4])
        assert physics.ball.center.tolist() == pytest.approx([200.0, 200.4])

    def test_trail_keeps_last_five_centers(self, physics):
        positions = []
        for _ in range(8):
            positions.append(tuple(physics.ball.center))
            physics.update()
        assert len(physics.trail) == 5
        assert np.allclose(np.array(list(physics.trail)), np.array(positions[-5:]))

    def test_reflection_law(self, physics):
        t = physics.tuning
        t.set_gravity(0.0)
        t.velocity_decay = 1.0
        t.set_velocity_increase(0.0)
        t.set_growth_rate(0.0)
        _place(physics, (340.0, 200.0), (5.0, 1.0))
        v = physics.ball.velocity.copy()
        moved = physics.ball.center + v
        n = (moved - physics.boundary.center) / np.linalg.norm(moved - physics.boundary.center)

        assert physics.update()
        assert np.dot(physics.ball.velocity, n) == pytest.approx(-0.95 * np.dot(v, n))

    def test_boost_applied_after_reflection(self, physics):
        t = physics.tuning
        t.set_gravity(0.0)
        t.velocity_decay = 1.0
        t.set_velocity_increase(0.1)
        _place(physics, (340.0, 200.0), (5.0, 1.0))
        v = physics.ball.velocity.copy()
        moved = physics.ball.center + v
        n = (moved - physics.boundary.center) / np.linalg.norm(moved - physics.boundary.center)

        physics.update()
        assert np.dot(physics.ball.velocity, n) == pytest.approx(-0.95 * 1.1 * np.dot(v, n))

    def test_collision_marks_point_on_ring(self, physics):
        physics.tuning.set_gravity(0.0)
        _place(physics, (341.0, 200.0), (5.0, 0.0))
        physics.update()
        assert physics.collision_marks == [pytest.approx((350.0, 200.0))]
        # Ball parked just inside along the same angle
        assert physics.ball.center.tolist() == pytest.approx([200.0 + 150.0 - physics.ball.radius, 200.0])

    def test_slow_bounce_is_lifted_to_min_speed(self, physics):
        t = physics.tuning
        t.set_gravity(0.0)
        t.velocity_decay = 1.0
        _place(physics, (344.9, 200.0), (0.2, 0.0))
        assert physics.update()
        assert physics.ball.speed == pytest.approx(1.0)

    def test_zero_rate_growth_is_noop(self, physics):
        physics.tuning = TuningParameters.from_rates(gravity=0.0, growth_rate=0.0)
        _place(physics, (341.0, 200.0), (5.0, 0.0))
        assert physics.update()
        assert physics.ball.radius == 5.0

    def test_growth_capped_at_max(self, physics):
        physics.tuning.set_growth_rate(10.0)
        physics.tuning.set_gravity(0.0)
        physics.ball.radius = physics.max_radius - 1.0
        _place(physics, (200.0 + 150.0 - physics.ball.radius - 1.0, 200.0), (5.0, 0.0))
        assert physics.update()
        assert physics.ball.radius == physics.max_radius

    def test_ball_at_ring_center_does_not_divide_by_zero(self, physics):
        physics.tuning.set_gravity(0.0)
        physics.ball.radius = physics.boundary.radius
        _place(physics, (200.0, 200.0), (0.0, 0.0))
        assert physics.update()
        assert np.all(np.isfinite(physics.ball.velocity))
        assert np.all(np.isfinite(physics.ball.center))
        assert physics.ball.speed == pytest.approx(1.0)

    def test_listener_fires_once_per_collision_in_order(self, physics):
        seen = []
        physics.add_collision_listener(lambda: seen.append(len(physics.collision_marks)))
        for _ in range(2000):
            physics.update()
        assert seen == list(range(1, len(physics.collision_marks) + 1))
        assert len(seen) > 0

    def test_listener_can_be_removed(self, physics):
        seen = []
        listener = lambda: seen.append(1)
        physics.add_collision_listener(listener)
        physics.remove_collision_listener(listener)
        for _ in range(500):
            physics.update()
        assert seen == []


class TestInvariants:

    @pytest.fixture
    def lively(self, physics):
        physics.tuning = TuningParameters.from_rates(gravity=0.8, velocity_increase=0.03,
                                                     velocity_decay=0.999, growth_rate=0.05)
        return physics

    def test_post_bounce_speed_and_radius_bounds(self, lively):
        checks = []

        def check():
            checks.append((lively.ball.speed, lively.ball.radius))

        lively.add_collision_listener(check)
        for _ in range(3000):
            lively.update()
        assert checks
        for speed, radius in checks:
            assert speed >= 1.0 - 1e-9
            assert radius <= lively.max_radius

    def test_radius_never_shrinks(self, lively):
        last = lively.ball.radius
        for _ in range(3000):
            lively.update()
            assert lively.ball.radius >= last
            last = lively.ball.radius

    def test_ball_contained_after_every_tick(self, lively):
        for _ in range(3000):
            lively.update()
            assert _dist_to_center(lively) + lively.ball.radius <= lively.boundary.radius + 1e-6

    def test_reset_is_idempotent(self, lively):
        for _ in range(300):
            lively.update()
        lively.reset()
        first = (lively.ball.radius, lively.ball.center.tolist(), list(lively.trail), list(lively.collision_marks))
        lively.reset()
        second = (lively.ball.radius, lively.ball.center.tolist(), list(lively.trail), list(lively.collision_marks))
        assert first == second
        assert first[2] == [] and first[3] == []

    def test_drag_override_zeroes_velocity(self, physics):
        physics.drag_to(123.0, 222.0)
        assert physics.ball.center.tolist() == [123.0, 222.0]
        assert physics.ball.velocity.tolist() == [0.0, 0.0]

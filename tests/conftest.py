"""Pytest configuration and shared fixtures."""

import random

import pytest

from singing_ball.config import CaptureConfig, SimulationConfig, TuningParameters
from singing_ball.physics import PhysicsState
from singing_ball.scheduler import SimulatedScheduler
from singing_ball.simulation import CircleSimulation, new_surface

SIZE = 400


@pytest.fixture
def sim_config():
    """400x400 surface: ring centered at (200, 200) with radius 150."""
    return SimulationConfig(width=SIZE, height=SIZE, boundary_inset=50.0)


@pytest.fixture
def capture_config():
    """Motion-JPEG in AVI; available in every OpenCV build."""
    return CaptureConfig(fourcc="MJPG", extension=".avi")


@pytest.fixture
def scheduler():
    return SimulatedScheduler()


@pytest.fixture
def physics(sim_config):
    return PhysicsState(SIZE, SIZE, TuningParameters(), sim_config)


@pytest.fixture
def make_sim(sim_config, capture_config, scheduler):
    """Factory for a small CircleSimulation on the simulated clock."""

    def _make(labels=(), on_collision=None, tuning=None, seed=7):
        return CircleSimulation(new_surface(SIZE, SIZE), labels, on_collision=on_collision,
                                scheduler=scheduler, config=sim_config, tuning=tuning or TuningParameters(),
                                capture_config=capture_config, rng=random.Random(seed))

    return _make

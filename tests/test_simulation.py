import pytest

from singing_ball.audio import AudioTrack
from singing_ball.render import LabelEntity, SurfaceError
from singing_ball.simulation import CircleSimulation, new_surface


def test_surface_too_small(sim_config):
    with pytest.raises(SurfaceError):
        CircleSimulation(new_surface(60, 60), config=sim_config)


def test_surface_must_be_rgb(sim_config):
    with pytest.raises(SurfaceError):
        CircleSimulation(new_surface(400, 400)[:, :, 0], config=sim_config)


def test_setters_update_shared_tuning(make_sim):
    sim = make_sim()
    sim.set_gravity(0.0)
    sim.set_velocity_increase(0.05)
    sim.set_velocity_decay(1.0)
    sim.set_ball_growth_rate(0.0)
    assert sim.physics.tuning is sim.tuning
    assert sim.tuning.gravity == 0.0
    assert sim.tuning.velocity_boost == pytest.approx(1.05)
    assert sim.tuning.velocity_decay == 1.0
    assert sim.tuning.growth_factor == 1.0


def test_collision_callback_and_counter(make_sim, scheduler):
    hits = []
    sim = make_sim(on_collision=lambda: hits.append(1))
    sim.start()
    scheduler.advance(5000)
    assert sim.collisions > 0
    assert len(hits) == sim.collisions

    sim.set_collision_callback(None)
    before = len(hits)
    scheduler.advance(5000)
    assert len(hits) == before


def test_update_labels(make_sim):
    first = [LabelEntity(id="a", text="one", x=200, y=300)]
    sim = make_sim(labels=first)
    assert sim.get_labels() == first
    second = [LabelEntity(id="b", text="two", x=200, y=320)]
    sim.update_labels(second)
    assert sim.get_labels() == second


def test_reset_restores_start_state(make_sim, scheduler):
    sim = make_sim()
    start = sim.physics.ball.center.tolist()
    sim.start()
    scheduler.advance(3000)
    sim.reset()
    assert sim.physics.ball.center.tolist() == start
    assert sim.physics.ball.radius == 5.0
    assert sim.physics.collision_marks == []
    assert sim.collisions == 0
    assert sim.elapsed == 0.0
    # Reset does not pause a running loop
    assert sim.is_running()


def test_audio_destination_follows_scheduler_clock(make_sim, scheduler):
    sim = make_sim()
    dest = sim.get_audio_destination()
    assert isinstance(dest, AudioTrack)
    assert dest.sample_rate == 44100
    scheduler.advance(1500)
    assert dest.play([0.1]) == pytest.approx(1.5)


def test_redraw_paints_without_ticking(make_sim):
    sim = make_sim()
    sim.redraw()
    assert sim.renderer.surface.any()
    assert sim.driver.frames == 0


def test_unpaintable_label_rejected_and_old_labels_kept(make_sim):
    first = [LabelEntity(id="a", text="one", x=200, y=300)]
    sim = make_sim(labels=first)
    with pytest.raises(ValueError):
        sim.update_labels([LabelEntity(id="b", text="two", x=200, y=320, color="notacolor")])
    assert sim.get_labels() == first


def test_unpaintable_label_rejected_at_construction(make_sim):
    with pytest.raises(ValueError):
        make_sim(labels=[LabelEntity(id="a", text="one", x=200, y=300, color="#12")])


def test_named_color_label_survives_ticks(make_sim, scheduler):
    sim = make_sim(labels=[LabelEntity(id="a", text="one", x=200, y=300, color="white")])
    sim.start()
    scheduler.advance(500)
    assert sim.is_running()
    assert sim.driver.frames > 1


class TestLabelDrag:

    @pytest.fixture
    def sim(self, make_sim):
        labels = [LabelEntity(id="low", text="WORD", x=200, y=300, size=40),
                  LabelEntity(id="top", text="WORD", x=210, y=300, size=40)]
        return make_sim(labels=labels)

    def test_label_at_picks_topmost(self, sim):
        assert sim.label_at(205, 300).id == "top"
        assert sim.label_at(165, 300).id == "low"
        assert sim.label_at(50, 50) is None

    def test_drag_moves_only_grabbed_label(self, sim):
        assert sim.handle_pointer_down(225, 300)
        assert sim.is_dragging()
        assert not sim.driver.is_dragging()
        assert sim.handle_pointer_move(150, 260)
        assert sim.handle_pointer_up()
        assert not sim.is_dragging()
        labels = {lb.id: lb for lb in sim.get_labels()}
        assert (labels["top"].x, labels["top"].y) == (150.0, 260.0)
        assert (labels["low"].x, labels["low"].y) == (200.0, 300.0)

    def test_stopped_label_drag_repaints(self, sim):
        sim.handle_pointer_down(225, 300)
        sim.handle_pointer_move(200, 80)
        assert sim.renderer.surface[60:100, 160:240].max() > 200
        assert sim.driver.frames == 0

    def test_press_on_empty_space_grabs_nothing(self, sim):
        assert not sim.handle_pointer_down(50, 50)
        assert not sim.is_dragging()
        assert not sim.handle_pointer_move(60, 60)
        assert not sim.handle_pointer_up()

    def test_ball_drag_reported(self, sim):
        x, y = sim.physics.ball.center
        assert sim.handle_pointer_down(x, y)
        assert sim.is_dragging()
        assert sim.driver.is_dragging()
        sim.handle_pointer_up()
        assert not sim.is_dragging()

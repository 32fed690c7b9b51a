import json
import logging
import os
import shutil
import zipfile

import numpy as np
import pytest

from singing_ball.audio import write_wav
from singing_ball.cli import build_parser, default_labels, main, resolve_config
from singing_ball.videoinfo import inspect_video

HEADLESS = ["--width", "320", "--height", "320", "--no-audio", "--fourcc", "MJPG", "--ext", "avi",
            "--seed", "1", "--log-level", "WARNING"]
WITH_AUDIO = [a for a in HEADLESS if a != "--no-audio"]


@pytest.fixture(autouse=True)
def restore_logging():
    logger = logging.getLogger("singing_ball")
    level = logger.level
    yield
    logger.handlers.clear()
    logger.setLevel(level)


def _last_line(capsys):
    return capsys.readouterr().out.strip().splitlines()[-1]


def test_record_prints_output_path(tmp_path, capsys):
    main(["record", str(tmp_path), "--duration", "1"] + HEADLESS)
    path = _last_line(capsys)
    assert os.path.dirname(path) == str(tmp_path)
    assert path.endswith(".avi")

    info = inspect_video(path)
    assert (info.width, info.height) == (320, 320)
    assert abs(info.frames - 60) <= 1


def test_batch_bundles_every_run(tmp_path, capsys):
    main(["batch", str(tmp_path), "--count", "2", "--duration", "1", "--pause", "0.5"] + HEADLESS)
    path = _last_line(capsys)
    assert path.endswith(".zip")
    with zipfile.ZipFile(path) as zf:
        assert sorted(zf.namelist()) == ["simulation-1.avi", "simulation-2.avi"]
        assert all(i.file_size > 0 for i in zf.infolist())


def test_info_describes_video(tmp_path, capsys):
    main(["record", str(tmp_path), "--duration", "0.5"] + HEADLESS)
    path = _last_line(capsys)
    main(["info", path])
    out = capsys.readouterr().out
    assert "resolution: 320x320" in out
    assert "fps: 60.000" in out


def test_info_on_missing_file(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc:
        main(["info", str(tmp_path / "missing.mp4")])
    assert exc.value.code == 1
    assert "Cannot open video" in capsys.readouterr().err


def test_bad_config_exits(tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"tuning": {"nope": 1}}), encoding="utf-8")
    with pytest.raises(SystemExit, match="Bad config"):
        main(["record", str(tmp_path), "--config", str(bad)] + HEADLESS)


def test_surface_too_small_exits(tmp_path):
    args = ["record", str(tmp_path), "--duration", "1", "--no-audio", "--width", "200", "--height", "200",
            "--log-level", "ERROR"]
    with pytest.raises(SystemExit, match="record failed"):
        main(args)


def test_flags_override_config(tmp_path):
    cfg_path = tmp_path / "cfg.json"
    cfg_path.write_text(json.dumps({"tuning": {"gravity": 0.1}, "batch": {"count": 7}}), encoding="utf-8")
    args = build_parser().parse_args(["batch", "--config", str(cfg_path), "--velocity-increase", "0.05",
                                      "--count", "3", "--ext", "mkv"])
    cfg = resolve_config(args)
    assert cfg.tuning.gravity == 0.1
    assert cfg.tuning.velocity_boost == pytest.approx(1.05)
    assert cfg.batch.count == 3
    assert cfg.capture.extension == ".mkv"


def test_default_labels_stack_down_from_center():
    labels = default_labels(["a", "b"], 1080, 1920, "Montserrat")
    assert [(lb.text, lb.x, lb.y) for lb in labels] == [("a", 540.0, 960.0), ("b", 540.0, 1020.0)]
    assert default_labels(None, 1080, 1920, "Arial")[0].text == "@singing.ball"


def test_audio_flags_parsed():
    args = build_parser().parse_args(["record", "--audio", "a.wav", "--audio", "b.wav", "--segment", "0.5"])
    assert args.audio_files == ["a.wav", "b.wav"]
    assert args.segment == 0.5
    assert build_parser().parse_args(["record"]).audio_files is None


def test_missing_audio_file_exits(tmp_path):
    args = ["record", str(tmp_path), "--duration", "1", "--audio", str(tmp_path / "missing.wav")] + WITH_AUDIO
    with pytest.raises(SystemExit, match="record failed"):
        main(args)


@pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="ffmpeg not on PATH")
def test_record_with_uploaded_audio(tmp_path, capsys):
    wav = str(tmp_path / "song.wav")
    t = np.arange(44100, dtype=np.float32) / 44100.0
    write_wav(wav, 0.5 * np.sin(2 * np.pi * 440.0 * t), 44100)
    out_dir = tmp_path / "out"
    main(["record", str(out_dir), "--duration", "3", "--audio", wav, "--segment", "0.2"] + WITH_AUDIO)
    path = _last_line(capsys)
    assert os.path.isfile(path)
    assert os.path.dirname(path) == str(out_dir)

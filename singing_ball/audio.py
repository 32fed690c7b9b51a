import logging
import re
import time
import wave
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

log = logging.getLogger(__name__)

_NOTE_RE = re.compile(r"^([A-Ga-g])(s|#|b)?(-?\d)$")
_SEMITONES = {"C": 0, "D": 2, "E": 4, "F": 5, "G": 7, "A": 9, "B": 11}


class AudioError(RuntimeError):
    pass


class AudioTrack:
    """Timestamped mono mixing bus.

    Collaborators drop clips onto the track as things happen; a capture reads
    back whatever overlapped its recording window with render(). Clips are
    kept only while some open tap could still need them.
    """

    def __init__(self, sample_rate: int = 44100, clock: Callable[[], float] = time.perf_counter,
                 name: str = "destination"):
        if int(sample_rate) <= 0:
            raise AudioError(f"Invalid sample rate: {sample_rate}")
        self.sample_rate = int(sample_rate)
        self.clock = clock
        self.name = name
        self._clips: List[Tuple[float, np.ndarray]] = []
        self._taps: Dict[int, float] = {}
        self._next_tap = 0

    def __len__(self) -> int:
        return len(self._clips)

    def play(self, samples: Sequence[float], at: Optional[float] = None) -> float:
        clip = np.asarray(samples, dtype=np.float32)
        if clip.ndim != 1:
            raise AudioError(f"Track '{self.name}' takes mono clips, got shape {clip.shape}")
        t = self.clock() if at is None else float(at)
        if clip.size:
            self._clips.append((t, clip))
        self._prune(self.clock())
        return t

    def open_tap(self, start: Optional[float] = None) -> int:
        tap = self._next_tap
        self._next_tap += 1
        self._taps[tap] = self.clock() if start is None else float(start)
        return tap

    def close_tap(self, tap: int) -> None:
        self._taps.pop(tap, None)
        self._prune(self.clock())

    def validate(self) -> None:
        for t, clip in self._clips:
            if not np.all(np.isfinite(clip)):
                raise AudioError(f"Track '{self.name}' holds a non-finite clip at t={t:.3f}s")

    def _prune(self, now: float) -> None:
        horizon = min(self._taps.values(), default=now)
        sr = float(self.sample_rate)
        self._clips = [(t, c) for t, c in self._clips if t + c.shape[0] / sr > horizon]

    def render(self, start: float, end: float) -> np.ndarray:
        """Mix every clip overlapping [start, end) into one float32 buffer."""
        sr = self.sample_rate
        n = max(0, int(round((end - start) * sr)))
        out = np.zeros(n, dtype=np.float32)
        for t, clip in self._clips:
            offset = int(round((t - start) * sr))
            src0 = max(0, -offset)
            dst0 = max(0, offset)
            count = min(clip.shape[0] - src0, n - dst0)
            if count > 0:
                out[dst0:dst0 + count] += clip[src0:src0 + count]
        return out


class AudioStream:
    """A bundle of audio tracks handed to a capture session."""

    def __init__(self, tracks: Iterable[AudioTrack] = ()):
        self._tracks = list(tracks)

    def get_audio_tracks(self) -> List[AudioTrack]:
        return list(self._tracks)

    def add_track(self, track: AudioTrack) -> None:
        self._tracks.append(track)


def resample(audio: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    if src_rate == dst_rate or audio.size == 0:
        return audio
    n = int(round(audio.shape[0] * dst_rate / float(src_rate)))
    x_src = np.arange(audio.shape[0], dtype=np.float64) / src_rate
    x_dst = np.arange(n, dtype=np.float64) / dst_rate
    return np.interp(x_dst, x_src, audio).astype(np.float32)


def mix_tracks(tracks: Iterable[AudioTrack], start: float, end: float, sample_rate: int) -> np.ndarray:
    n = max(0, int(round((end - start) * sample_rate)))
    audio = np.zeros(n, dtype=np.float32)
    for track in tracks:
        part = resample(track.render(start, end), track.sample_rate, sample_rate)
        m = min(n, part.shape[0])
        audio[:m] += part[:m]
    # prevent clipping
    peak = float(np.max(np.abs(audio))) if audio.size else 0.0
    if peak > 0.99:
        audio *= 0.99 / (peak + 1e-9)
    return audio


def write_wav(path: str, audio: np.ndarray, sample_rate: int) -> None:
    pcm = np.int16(np.clip(audio, -1.0, 1.0) * 32767)
    with wave.open(path, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(int(sample_rate))
        wf.writeframes(pcm.tobytes())


def note_frequency(note: str) -> float:
    """'A4' -> 440.0. Sharps as 'Cs5' or 'C#5', flats as 'Db5'."""
    m = _NOTE_RE.match(note.strip())
    if not m:
        raise ValueError(f"Bad note: {note!r}")
    letter, accidental, octave = m.group(1).upper(), m.group(2), int(m.group(3))
    semitone = _SEMITONES[letter] + {"s": 1, "#": 1, "b": -1}.get(accidental or "", 0)
    midi = 12 * (octave + 1) + semitone
    return 440.0 * 2.0 ** ((midi - 69) / 12.0)


def parse_notes(text: str) -> List[float]:
    return [note_frequency(tok) for tok in text.split(",") if tok.strip()]


def beep(freq: float, sample_rate: int, rng: np.random.Generator, duration: float = 0.085,
         volume: float = 0.33, glide: float = 0.0) -> np.ndarray:
    """Bright short beep: fast attack, exponential decay."""
    t = np.linspace(0, duration, int(sample_rate * duration), endpoint=False)
    env = np.exp(-t * 22.0) * np.clip(t / 0.006, 0.0, 1.0)
    sweep = np.linspace(0.0, glide, t.shape[0])
    phase = float(rng.uniform(0, 2 * np.pi))
    return (np.sin(2 * np.pi * (freq + sweep) * t + phase) * env * volume).astype(np.float32)


class BounceVoice:
    """Collision-driven audio collaborator.

    Every play_next() drops one beep on the destination track. With a note
    sequence the beeps walk through it in order and wrap; without one each
    beep gets a random pitch.
    """

    def __init__(self, destination: AudioTrack, notes: str = "", seed: Optional[int] = None,
                 volume: float = 0.33):
        self.destination = destination
        self.notes = parse_notes(notes) if notes else []
        self.seed = seed
        self.volume = float(volume)
        self.index = 0
        self.rng = np.random.default_rng(seed)

    def set_notes(self, notes: str) -> None:
        self.notes = parse_notes(notes) if notes else []
        self.index = 0

    def reset(self) -> None:
        self.index = 0
        self.rng = np.random.default_rng(self.seed)

    def play_next(self) -> None:
        sr = self.destination.sample_rate
        if self.notes:
            freq = self.notes[self.index % len(self.notes)]
            sig = beep(freq, sr, self.rng, duration=0.18, volume=self.volume)
        else:
            freq = float(self.rng.uniform(780.0, 1400.0))
            vol = self.volume * float(self.rng.uniform(0.85, 1.2))
            sig = beep(freq, sr, self.rng, volume=vol, glide=float(self.rng.uniform(-120.0, 90.0)))
        self.index += 1
        self.destination.play(sig)

    def get_audio_stream(self) -> AudioStream:
        return AudioStream([self.destination])


def load_wav(path: str) -> Tuple[np.ndarray, int]:
    """Read a PCM WAV file as mono float32 in [-1, 1]. Returns (samples, sample_rate)."""
    try:
        with wave.open(path, "rb") as wf:
            channels = wf.getnchannels()
            width = wf.getsampwidth()
            rate = wf.getframerate()
            raw = wf.readframes(wf.getnframes())
    except (OSError, wave.Error, EOFError) as e:
        raise AudioError(f"Cannot read {path}: {e}") from e
    if width == 1:
        pcm = (np.frombuffer(raw, dtype=np.uint8).astype(np.float32) - 128.0) / 128.0
    elif width == 2:
        pcm = np.frombuffer(raw, dtype="<i2").astype(np.float32) / 32768.0
    elif width == 4:
        pcm = np.frombuffer(raw, dtype="<i4").astype(np.float32) / 2147483648.0
    else:
        raise AudioError(f"Unsupported sample width {width * 8} bits in {path}")
    if channels > 1:
        usable = pcm.shape[0] - pcm.shape[0] % channels
        pcm = pcm[:usable].reshape(-1, channels).mean(axis=1)
    return pcm.astype(np.float32), rate


def split_segments(audio: np.ndarray, sample_rate: int, segment_duration: float,
                   fade: float = 0.005) -> List[np.ndarray]:
    """Cut audio into back-to-back segments with short fades so cuts don't click.

    A trailing piece shorter than half a segment is dropped.
    """
    size = int(round(segment_duration * sample_rate))
    if size <= 0:
        raise AudioError(f"Segment duration too short: {segment_duration}")
    ramp = min(size // 2, int(fade * sample_rate))
    segments = []
    for start in range(0, audio.shape[0], size):
        seg = np.array(audio[start:start + size], dtype=np.float32)
        if seg.shape[0] < size // 2:
            break
        if ramp > 0:
            seg[:ramp] *= np.linspace(0.0, 1.0, ramp, dtype=np.float32)
            seg[-ramp:] *= np.linspace(1.0, 0.0, ramp, dtype=np.float32)
        segments.append(seg)
    return segments


class SegmentVoice:
    """Collision-driven playback of uploaded audio.

    Loaded files are cut into equal segments and queued in load order; every
    play_next() drops the next segment onto the destination and wraps at the
    end. reset() rewinds to the first segment.
    """

    def __init__(self, destination: AudioTrack, segment_duration: float = 0.3):
        self.destination = destination
        self.segment_duration = float(segment_duration)
        self.segments: List[np.ndarray] = []
        self.index = 0

    def __len__(self) -> int:
        return len(self.segments)

    def add_audio(self, samples: np.ndarray, sample_rate: int) -> int:
        audio = resample(np.asarray(samples, dtype=np.float32), int(sample_rate), self.destination.sample_rate)
        if not np.all(np.isfinite(audio)):
            raise AudioError("Audio holds non-finite samples")
        added = split_segments(audio, self.destination.sample_rate, self.segment_duration)
        self.segments.extend(added)
        return len(added)

    def load_file(self, path: str) -> int:
        samples, rate = load_wav(path)
        added = self.add_audio(samples, rate)
        log.info("Loaded %s: %d segment(s) of %.2fs", path, added, self.segment_duration)
        return added

    def clear_segments(self) -> None:
        self.segments = []
        self.index = 0

    def reset(self) -> None:
        self.index = 0

    def play_next(self) -> None:
        if not self.segments:
            return
        self.destination.play(self.segments[self.index % len(self.segments)])
        self.index += 1

    def get_audio_stream(self) -> AudioStream:
        return AudioStream([self.destination])

import logging
import logging.handlers
import queue
import random
import time
import tkinter as tk
from tkinter import filedialog, messagebox, ttk
from typing import List, Optional, Sequence

import cv2
import numpy as np

from .audio import AudioError, BounceVoice, SegmentVoice
from .batch import BatchRecorder
from .capture import CaptureArtifact, CaptureError
from .config import AppConfig
from .export import bundle_artifacts, save_artifact
from .render import LabelEntity
from .scheduler import TkScheduler
from .simulation import CircleSimulation, new_surface

PREVIEW_HEIGHT = 760
FONT_FAMILIES = ["Montserrat", "Montserrat Bold", "Arial", "Times New Roman", "Courier New", "Georgia", "Verdana"]


def to_photo(frame: np.ndarray, size) -> tk.PhotoImage:
    small = cv2.resize(frame, size, interpolation=cv2.INTER_AREA)
    rgb = cv2.cvtColor(small, cv2.COLOR_BGR2RGB)
    h, w = rgb.shape[:2]
    header = f"P6 {w} {h} 255 ".encode("ascii")
    return tk.PhotoImage(data=header + rgb.tobytes(), format="PPM")


class App(tk.Tk):
    def __init__(self, cfg: AppConfig, labels, out_dir: str = "finished", notes: str = "",
                 seed: Optional[int] = None, audio: bool = True, audio_files: Sequence[str] = (),
                 segment: float = 0.3):
        super().__init__()
        self.title("Singing Ball")
        self.cfg = cfg
        self.out_dir = out_dir

        self.msg_q = queue.Queue()
        handler = logging.handlers.QueueHandler(self.msg_q)
        handler.setLevel(logging.INFO)
        logging.getLogger("singing_ball").addHandler(handler)
        self._log_handler = handler

        sim_cfg = cfg.simulation
        self.scale = PREVIEW_HEIGHT / float(sim_cfg.height)
        self.preview_size = (max(1, int(sim_cfg.width * self.scale)), PREVIEW_HEIGHT)

        self.sim = CircleSimulation(new_surface(sim_cfg.width, sim_cfg.height), labels,
                                    scheduler=TkScheduler(self), config=sim_cfg, tuning=cfg.tuning,
                                    capture_config=cfg.capture, rng=random.Random(seed))
        self.audio_enabled = audio
        self.beeps = BounceVoice(self.sim.get_audio_destination(), seed=seed)
        self.segments = SegmentVoice(self.sim.get_audio_destination(), segment_duration=segment)
        self.voice = None
        self.batch = BatchRecorder(self.sim, audio=None, pause=cfg.batch.pause)
        self._photo = None

        tuning = cfg.tuning
        self.gravity_var = tk.DoubleVar(value=tuning.gravity)
        self.increase_var = tk.DoubleVar(value=round(tuning.velocity_boost - 1.0, 4))
        self.decay_var = tk.DoubleVar(value=tuning.velocity_decay)
        self.growth_var = tk.DoubleVar(value=round(tuning.growth_factor - 1.0, 4))
        self.duration_var = tk.StringVar(value=f"{cfg.batch.duration:g}")
        self.count_var = tk.StringVar(value=str(cfg.batch.count))
        self.notes_var = tk.StringVar(value=notes)
        self.audio_var = tk.StringVar(value="Beeps")
        self.text_var = tk.StringVar(value="New Text")
        self.font_var = tk.StringVar(value="Arial")
        self.size_var = tk.StringVar(value="30")
        self.color_var = tk.StringVar(value="#FFFFFF")
        self.bold_var = tk.BooleanVar(value=False)

        self._build_ui()
        self._refresh_labels()
        if notes:
            self.on_apply_notes()
        for path in audio_files:
            self._load_audio(path)
        self._select_voice()

        self.sim.renderer.add_frame_listener(self._show_frame)
        self.protocol("WM_DELETE_WINDOW", self.on_quit)
        self.sim.start()
        self.after(100, self._poll_queue)

    def _build_ui(self):
        pad = {"padx": 10, "pady": 6}

        self.preview = ttk.Label(self)
        self.preview.pack(side=tk.LEFT, padx=8, pady=8)
        self.preview.bind("<ButtonPress-1>", self._on_press)
        self.preview.bind("<B1-Motion>", self._on_drag)
        self.preview.bind("<ButtonRelease-1>", self._on_release)
        self.preview.bind("<Leave>", self._on_release)

        side = ttk.Frame(self)
        side.pack(side=tk.LEFT, fill=tk.BOTH, expand=True)

        frm_ctrl = ttk.Frame(side)
        frm_ctrl.pack(fill=tk.X, **pad)
        self.play_btn = ttk.Button(frm_ctrl, text="Pause", command=self.on_play_pause)
        self.play_btn.pack(side=tk.LEFT)
        ttk.Button(frm_ctrl, text="Reset", command=self.on_reset).pack(side=tk.LEFT, padx=8)
        self.record_btn = ttk.Button(frm_ctrl, text="Record", command=self.on_record)
        self.record_btn.pack(side=tk.LEFT)

        tabs = ttk.Notebook(side)
        tabs.pack(fill=tk.X, **pad)

        frm_tune = ttk.Frame(tabs)
        tabs.add(frm_tune, text="Tuning")
        sliders = [
            ("Gravity", self.gravity_var, 0.0, 1.0, 0.1, self.sim.set_gravity),
            ("Velocity Increase", self.increase_var, 0.0, 0.1, 0.01, self.sim.set_velocity_increase),
            ("Velocity Decay", self.decay_var, 0.99, 1.0, 0.001, self.sim.set_velocity_decay),
            ("Ball Growth Rate", self.growth_var, 0.0, 0.2, 0.001, self.sim.set_ball_growth_rate),
        ]
        for row, (text, var, lo, hi, step, setter) in enumerate(sliders):
            ttk.Label(frm_tune, text=text).grid(row=row, column=0, sticky=tk.W)
            tk.Scale(frm_tune, variable=var, from_=lo, to=hi, resolution=step, orient=tk.HORIZONTAL,
                     length=220, command=lambda v, s=setter: s(float(v))).grid(row=row, column=1, padx=8)

        frm_text = ttk.Frame(tabs)
        tabs.add(frm_text, text="Text")
        self.label_list = tk.Listbox(frm_text, height=5, exportselection=False)
        self.label_list.grid(row=0, column=0, columnspan=4, sticky=tk.EW)
        self.label_list.bind("<<ListboxSelect>>", self._on_label_selected)
        ttk.Label(frm_text, text="Text:").grid(row=1, column=0, sticky=tk.W)
        ttk.Entry(frm_text, textvariable=self.text_var, width=28).grid(row=1, column=1, columnspan=3, sticky=tk.W)
        ttk.Label(frm_text, text="Font:").grid(row=2, column=0, sticky=tk.W)
        ttk.Combobox(frm_text, textvariable=self.font_var, values=FONT_FAMILIES, width=18).grid(
            row=2, column=1, sticky=tk.W)
        ttk.Checkbutton(frm_text, text="Bold", variable=self.bold_var).grid(row=2, column=2, sticky=tk.W)
        ttk.Label(frm_text, text="Size:").grid(row=3, column=0, sticky=tk.W)
        ttk.Spinbox(frm_text, from_=10, to=100, textvariable=self.size_var, width=6).grid(row=3, column=1, sticky=tk.W)
        ttk.Label(frm_text, text="Color:").grid(row=4, column=0, sticky=tk.W)
        ttk.Entry(frm_text, textvariable=self.color_var, width=10).grid(row=4, column=1, sticky=tk.W)
        frm_text_btns = ttk.Frame(frm_text)
        frm_text_btns.grid(row=5, column=0, columnspan=4, sticky=tk.W, pady=4)
        ttk.Button(frm_text_btns, text="Add Text", command=self.on_add_label).pack(side=tk.LEFT)
        ttk.Button(frm_text_btns, text="Apply", command=self.on_apply_label).pack(side=tk.LEFT, padx=6)
        ttk.Button(frm_text_btns, text="Remove", command=self.on_remove_label).pack(side=tk.LEFT)

        frm_audio = ttk.Frame(tabs)
        tabs.add(frm_audio, text="Sound")
        ttk.Label(frm_audio, text="Notes (e.g. C5,Cs5,D5,E5):").grid(row=0, column=0, columnspan=2, sticky=tk.W)
        ttk.Entry(frm_audio, textvariable=self.notes_var, width=32).grid(row=1, column=0, sticky=tk.W)
        ttk.Button(frm_audio, text="Apply Notes", command=self.on_apply_notes).grid(row=1, column=1, padx=6)
        ttk.Button(frm_audio, text="Load WAV...", command=self.on_load_audio).grid(row=2, column=0, sticky=tk.W,
                                                                                     pady=4)
        ttk.Button(frm_audio, text="Use Beeps", command=self.on_use_beeps).grid(row=2, column=1, padx=6)
        ttk.Label(frm_audio, textvariable=self.audio_var).grid(row=3, column=0, columnspan=2, sticky=tk.W)

        frm_batch = ttk.Labelframe(side, text="Batch recording")
        frm_batch.pack(fill=tk.X, **pad)
        ttk.Label(frm_batch, text="Recording duration (seconds):").grid(row=0, column=0, sticky=tk.W)
        ttk.Spinbox(frm_batch, from_=1, to=60, textvariable=self.duration_var, width=8).grid(
            row=0, column=1, sticky=tk.W, padx=8)
        ttk.Label(frm_batch, text="How many recordings:").grid(row=1, column=0, sticky=tk.W)
        self.count_entry = ttk.Spinbox(frm_batch, from_=1, to=100, textvariable=self.count_var, width=8)
        self.count_entry.grid(row=1, column=1, sticky=tk.W, padx=8)
        self.batch_btn = ttk.Button(frm_batch, text="Start Batch", command=self.on_start_batch)
        self.batch_btn.grid(row=2, column=0, sticky=tk.W, pady=4)

        self.prog = ttk.Progressbar(side, mode="determinate")
        self.prog.pack(fill=tk.X, **pad)

        frm_log = ttk.Labelframe(side, text="Log")
        frm_log.pack(fill=tk.BOTH, expand=True, **pad)
        self.log = tk.Text(frm_log, height=12, width=60, wrap=tk.WORD)
        self.log.pack(fill=tk.BOTH, expand=True)

    def _log(self, msg: str):
        self.log.insert(tk.END, msg + "\n")
        self.log.see(tk.END)

    def _show_frame(self, frame: np.ndarray):
        self._photo = to_photo(frame, self.preview_size)
        self.preview.configure(image=self._photo)

    def _to_surface(self, event):
        return event.x / self.scale, event.y / self.scale

    def _on_press(self, event):
        if self.sim.handle_pointer_down(*self._to_surface(event)):
            self.preview.configure(cursor="fleur")

    def _on_drag(self, event):
        if self.sim.is_dragging():
            self.sim.handle_pointer_move(*self._to_surface(event))

    def _on_release(self, _event):
        if self.sim.is_dragging():
            self.sim.handle_pointer_up()
            self.preview.configure(cursor="")
            self._refresh_labels()

    # Labels

    def _refresh_labels(self):
        selected = self.label_list.curselection()
        self.label_list.delete(0, tk.END)
        for label in self.sim.get_labels():
            self.label_list.insert(tk.END, f"{label.text}  ({label.font}, {label.size})")
        if selected and selected[0] < self.label_list.size():
            self.label_list.selection_set(selected[0])

    def _selected_index(self) -> Optional[int]:
        selected = self.label_list.curselection()
        return selected[0] if selected else None

    def _on_label_selected(self, _event):
        index = self._selected_index()
        if index is None:
            return
        label = self.sim.get_labels()[index]
        self.text_var.set(label.text)
        self.font_var.set(label.font)
        self.size_var.set(str(label.size))
        self.color_var.set(label.color if isinstance(label.color, str) else "#FFFFFF")
        self.bold_var.set(label.bold)

    def _label_from_form(self, label_id: str, x: float, y: float) -> Optional[LabelEntity]:
        try:
            size = int(self.size_var.get())
        except ValueError:
            messagebox.showerror("Invalid input", "Text size must be a whole number.")
            return None
        return LabelEntity(id=label_id, text=self.text_var.get(), x=x, y=y, font=self.font_var.get(),
                           size=size, color=self.color_var.get().strip(), bold=self.bold_var.get())

    def _set_labels(self, labels: List[LabelEntity]) -> bool:
        try:
            self.sim.update_labels(labels)
        except ValueError as e:
            messagebox.showerror("Invalid text", str(e))
            return False
        self._refresh_labels()
        if not self.sim.is_running():
            self.sim.redraw()
        return True

    def on_add_label(self):
        w, h = self.sim.renderer.size
        label = self._label_from_form(f"label-{int(time.time() * 1000)}", w / 2.0, h / 2.0)
        if label is not None:
            self._set_labels(self.sim.get_labels() + [label])

    def on_apply_label(self):
        index = self._selected_index()
        if index is None:
            return
        labels = list(self.sim.get_labels())
        old = labels[index]
        label = self._label_from_form(old.id, old.x, old.y)
        if label is not None:
            labels[index] = label
            self._set_labels(labels)

    def on_remove_label(self):
        index = self._selected_index()
        if index is None:
            return
        labels = list(self.sim.get_labels())
        del labels[index]
        self.label_list.selection_clear(0, tk.END)
        self._set_labels(labels)

    # Sound

    def _select_voice(self):
        if not self.audio_enabled:
            self.voice = None
            self.audio_var.set("Audio disabled")
        elif len(self.segments):
            self.voice = self.segments
            self.audio_var.set(f"Audio segments: {len(self.segments)}")
        else:
            self.voice = self.beeps
            notes = len(self.beeps.notes)
            self.audio_var.set(f"Notes: {notes}" if notes else "Beeps")
        self.sim.set_collision_callback(self.voice.play_next if self.voice is not None else None)

    def _load_audio(self, path: str) -> bool:
        try:
            self.segments.load_file(path)
        except AudioError as e:
            messagebox.showerror("Audio failed", str(e))
            return False
        return True

    def on_load_audio(self):
        paths = filedialog.askopenfilenames(title="Audio files", filetypes=[("WAV audio", "*.wav")])
        for path in paths:
            if not self._load_audio(path):
                break
        self.segments.reset()
        self._select_voice()

    def on_use_beeps(self):
        self.segments.clear_segments()
        self._select_voice()

    def on_apply_notes(self):
        try:
            self.beeps.set_notes(self.notes_var.get().strip())
        except ValueError as e:
            messagebox.showerror("Invalid notes", str(e))
            return
        self._select_voice()

    # Transport

    def set_recording(self, recording: bool):
        state = tk.DISABLED if recording else tk.NORMAL
        self.batch_btn.config(state=state)
        self.count_entry.config(state=state)
        self.record_btn.config(text="Stop" if recording else "Record")

    def on_play_pause(self):
        if self.sim.is_running():
            self.sim.stop()
            self.play_btn.config(text="Play")
        else:
            self.sim.start()
            self.play_btn.config(text="Pause")

    def on_reset(self):
        self.sim.reset()
        if self.voice is not None:
            self.voice.reset()
        if not self.sim.is_running():
            self.sim.redraw()

    def on_record(self):
        if self.batch.active:
            return
        if self.sim.is_recording():
            self.sim.stop_recording()
            self.set_recording(False)
            return
        stream = self.voice.get_audio_stream() if self.voice is not None else None
        try:
            self.sim.start_recording(self._on_recording_done, stream)
        except CaptureError as e:
            messagebox.showerror("Recording failed", str(e))
            return
        self.set_recording(True)

    def _on_recording_done(self, artifact: CaptureArtifact):
        path = save_artifact(artifact, self.out_dir)
        self._log(f"Saved: {path}")

    def on_start_batch(self):
        # Validate inputs
        try:
            count = int(self.count_var.get())
            duration = float(self.duration_var.get())
        except ValueError:
            messagebox.showerror("Invalid input", "Please enter a valid count and duration.")
            return
        if count < 1 or duration <= 0:
            messagebox.showerror("Invalid input", "Count must be at least 1 and duration positive.")
            return
        if self.sim.is_recording():
            messagebox.showerror("Busy", "Stop the current recording first.")
            return

        self.set_recording(True)
        self.record_btn.config(state=tk.DISABLED)
        self.batch_btn.config(text="Recording...")
        self.prog.config(maximum=count, value=0)
        self.batch.audio = self.voice
        self.batch.start(count, duration, on_finished=self._on_batch_done, on_error=self._on_batch_error,
                         on_progress=lambda done, total: self.prog.step(1))

    def _end_batch_ui(self):
        self.set_recording(False)
        self.record_btn.config(state=tk.NORMAL)
        self.batch_btn.config(text="Start Batch")

    def _on_batch_done(self, artifacts: List[CaptureArtifact]):
        self._end_batch_ui()
        path = bundle_artifacts(artifacts, self.out_dir)
        self._log(f"Batch saved: {path}")
        messagebox.showinfo("Finished", f"{len(artifacts)} recording(s) saved to {path}")

    def _on_batch_error(self, error: BaseException):
        self._end_batch_ui()
        messagebox.showerror("Batch failed", str(error))

    def on_quit(self):
        self.batch.cancel()
        if self.sim.is_recording():
            self.sim.stop_recording()
        self.sim.stop()
        logging.getLogger("singing_ball").removeHandler(self._log_handler)
        self.destroy()

    def _poll_queue(self):
        try:
            while True:
                record = self.msg_q.get_nowait()
                self._log(record.getMessage())
        except queue.Empty:
            pass
        finally:
            self.after(100, self._poll_queue)


def main(cfg: AppConfig, labels, out_dir: str = "finished", notes: str = "", seed: Optional[int] = None,
         audio: bool = True, audio_files: Sequence[str] = (), segment: float = 0.3):
    app = App(cfg, labels, out_dir=out_dir, notes=notes, seed=seed, audio=audio, audio_files=audio_files,
              segment=segment)
    app.mainloop()

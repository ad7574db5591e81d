from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

MODE_OPTIONS = ["webcam", "upload"]


@dataclass
class ConfigSelection:
    mode: str
    camera_index: int
    video_path: Optional[Path]
    show_skeleton: bool
    show_guidance: bool
    log_stats: bool


class ConfigCancelledError(RuntimeError):
    pass


def prompt_user_config(
    default_mode: str,
    available_cameras: List[int],
    default_video: Optional[Path],
    show_skeleton_default: bool,
    show_guidance_default: bool,
    log_stats_default: bool,
) -> ConfigSelection:
    try:
        import tkinter as tk
        from tkinter import filedialog, messagebox, ttk
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError(
            "Tkinter is required for the setup panel but is not available; pass --mode and --video instead."
        ) from exc

    if default_mode not in MODE_OPTIONS:
        default_mode = "webcam"

    root = tk.Tk()
    root.title("PostureAI Setup")
    root.resizable(False, False)

    container = ttk.Frame(root, padding=16)
    container.grid(column=0, row=0, sticky="nsew")

    mode_var = tk.StringVar(value=default_mode)
    video_var = tk.StringVar(value=str(default_video) if default_video else "")
    skeleton_var = tk.BooleanVar(value=show_skeleton_default)
    guidance_var = tk.BooleanVar(value=show_guidance_default)
    log_stats_var = tk.BooleanVar(value=log_stats_default)

    ttk.Label(container, text="Input:").grid(column=0, row=0, sticky="w")
    mode_frame = ttk.Frame(container)
    mode_frame.grid(column=0, row=1, sticky="ew", pady=(0, 12))
    ttk.Radiobutton(mode_frame, text="Live Camera", value="webcam", variable=mode_var).grid(column=0, row=0, sticky="w")
    ttk.Radiobutton(mode_frame, text="Upload Video", value="upload", variable=mode_var).grid(column=1, row=0, sticky="w", padx=(12, 0))

    ttk.Label(container, text="Camera:").grid(column=0, row=2, sticky="w")
    camera_labels = [f"Camera {idx}" for idx in available_cameras] or ["No camera detected"]
    camera_map = dict(zip(camera_labels, available_cameras))
    camera_box = ttk.Combobox(container, values=camera_labels, state="readonly")
    camera_box.grid(column=0, row=3, sticky="ew", pady=(0, 12))
    camera_box.current(0)

    ttk.Label(container, text="Video file:").grid(column=0, row=4, sticky="w")
    file_frame = ttk.Frame(container)
    file_frame.grid(column=0, row=5, sticky="ew", pady=(0, 12))
    ttk.Entry(file_frame, textvariable=video_var, width=36).grid(column=0, row=0, sticky="ew")

    def on_browse() -> None:
        chosen = filedialog.askopenfilename(
            title="Choose a video",
            filetypes=[("Video files", "*.mp4 *.mov *.avi *.mkv *.webm"), ("All files", "*.*")],
        )
        if chosen:
            video_var.set(chosen)
            mode_var.set("upload")

    ttk.Button(file_frame, text="Browse...", command=on_browse).grid(column=1, row=0, padx=(8, 0))

    toggles = ttk.LabelFrame(container, text="Display", padding=(12, 8))
    toggles.grid(column=0, row=6, sticky="ew", pady=(0, 12))
    ttk.Checkbutton(toggles, text="Show pose skeleton", variable=skeleton_var).grid(column=0, row=0, sticky="w")
    ttk.Checkbutton(toggles, text="Show correction tips", variable=guidance_var).grid(column=0, row=1, sticky="w")
    ttk.Checkbutton(toggles, text="Log analysis rate every 5 seconds", variable=log_stats_var).grid(column=0, row=2, sticky="w")

    selection: dict[str, object] = {}

    def on_start() -> None:
        mode = mode_var.get()
        video = video_var.get().strip()
        if mode == "upload" and not video:
            messagebox.showwarning("PostureAI", "Choose a video file to analyze.")
            return
        if mode == "webcam" and not available_cameras:
            messagebox.showwarning("PostureAI", "No camera found. Please connect a camera and try again.")
            return
        selection["mode"] = mode
        selection["camera_index"] = camera_map.get(camera_box.get(), 0)
        selection["video_path"] = Path(video) if video else None
        selection["show_skeleton"] = skeleton_var.get()
        selection["show_guidance"] = guidance_var.get()
        selection["log_stats"] = log_stats_var.get()
        root.destroy()

    def on_cancel() -> None:
        selection.clear()
        root.destroy()

    root.protocol("WM_DELETE_WINDOW", on_cancel)

    start_btn = ttk.Button(container, text="Start", command=on_start)
    start_btn.grid(column=0, row=7, sticky="ew", pady=(4, 0))
    root.mainloop()

    if not selection:
        raise ConfigCancelledError("Setup panel was closed before starting.")

    video_path = selection["video_path"]
    return ConfigSelection(
        mode=str(selection["mode"]),
        camera_index=int(selection["camera_index"]),
        video_path=video_path if isinstance(video_path, Path) else None,
        show_skeleton=bool(selection["show_skeleton"]),
        show_guidance=bool(selection["show_guidance"]),
        log_stats=bool(selection["log_stats"]),
    )

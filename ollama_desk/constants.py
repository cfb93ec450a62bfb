from __future__ import annotations

import os

APP_NAME = "Ollama Desk"
DEFAULT_WINDOW_GEOMETRY = "1200x760"
MIN_WINDOW_WIDTH = 900
MIN_WINDOW_HEIGHT = 600

DEFAULT_BASE_URL = "http://127.0.0.1:11434"
DEFAULT_TIMEOUT = 120.0

STATE_ROOT = os.path.expanduser("~/.cache/ollama-desk")
DEFAULT_STATE_PATH = os.path.join(STATE_ROOT, "state.json")

# Milliseconds between UI ticks; the fast interval applies while speech is playing.
IDLE_TICK_MS = 120
REPAINT_TICK_MS = 16

# Seconds before a failed fetch may be issued again.
RETRY_INTERVAL = 2.0

EMPTY_SESSION_LABEL = "Empty session"
SHORT_NAME_FALLBACK = "Llama"
NO_MODELS_HINT = "No models found, is the server running?"
SUMMARY_MAX_CHARS = 32

SAMPLE_RATE = 24_000
DEFAULT_VOICE = "af_bella"

THEME = {
    "bg": "#0e1621",
    "user_fg": "#8fc1ff",
    "assistant_fg": "#e4ecfa",
    "system_fg": "#7f9ab5",
    "status_fg": "#d1d8e0",
    "input_bg": "#17212b",
    "input_fg": "#e4ecfa",
    "button_bg": "#f1f5fa",
    "button_fg": "#11161f",
    "button_active_bg": "#d8e4f2",
    "button_active_fg": "#11161f",
    "panel_bg": "#151f2a",
    "panel_heading_fg": "#e4ecfa",
    "panel_label_fg": "#b3c1d1",
    "entry_bg": "#0f1a24",
    "entry_fg": "#e4ecfa",
    "selected_bg": "#1f5b9c",
}

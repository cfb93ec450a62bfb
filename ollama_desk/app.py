from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Tuple

import tkinter as tk
from tkinter import scrolledtext

from .audio import KokoroSpeaker
from .catalog import FetchRequest, PickerView
from .client import OllamaClient
from .constants import (
    APP_NAME,
    DEFAULT_WINDOW_GEOMETRY,
    IDLE_TICK_MS,
    MIN_WINDOW_HEIGHT,
    MIN_WINDOW_WIDTH,
    REPAINT_TICK_MS,
    THEME,
)
from .fetcher import ModelFetcher
from .sessions import Session, SessionTab
from .settings import Mirostat, STOP_DOC, StopSequenceEditor, ToggleEditor, editors_for
from .speech import open_speech
from .state import load_directory, save_state

logger = logging.getLogger(__name__)

BUTTON_STYLE = {
    'bg': THEME['button_bg'],
    'fg': THEME['button_fg'],
    'activebackground': THEME['button_active_bg'],
    'activeforeground': THEME['button_active_fg'],
    'relief': 'flat',
    'bd': 0,
}

ENTRY_STYLE = {
    'bg': THEME['entry_bg'],
    'fg': THEME['entry_fg'],
    'insertbackground': THEME['entry_fg'],
    'relief': 'flat',
}


class Collapsible(tk.Frame):
    """Header button that shows or hides a body frame."""

    def __init__(self, parent: tk.Widget, title: str, *, open_: bool = False) -> None:
        super().__init__(parent, bg=THEME['panel_bg'])
        self.title = title
        self.is_open = open_
        self.header = tk.Button(
            self,
            anchor='w',
            command=self.toggle,
            bg=THEME['panel_bg'],
            fg=THEME['panel_heading_fg'],
            activebackground=THEME['panel_bg'],
            activeforeground=THEME['panel_heading_fg'],
            relief='flat',
            bd=0,
        )
        self.header.pack(fill='x')
        self.body = tk.Frame(self, bg=THEME['panel_bg'], padx=12)
        self._refresh()

    def toggle(self) -> None:
        self.is_open = not self.is_open
        self._refresh()

    def _refresh(self) -> None:
        self.header.configure(text=('▾ ' if self.is_open else '▸ ') + self.title)
        if self.is_open:
            self.body.pack(fill='x', pady=(0, 6))
        else:
            self.body.pack_forget()


class DeskApp:
    """Tkinter application driving the session directory from a tick loop."""

    def __init__(self, args) -> None:
        self.args = args
        self.client = OllamaClient(args.base_url, args.timeout)
        self.fetcher = ModelFetcher(self.client)
        self.auto_speak = not args.no_auto_speak

        self.speech = None
        if not args.text_only:
            self.speech = open_speech(lambda: KokoroSpeaker(voice=args.voice, speed=args.speed))

        self.directory = load_directory(args.state, self.speech, auto_speak=self.auto_speak)

        self.tick_job: Optional[str] = None
        self._repaint_requested = False
        self._sessions_signature: Optional[Tuple[Any, ...]] = None
        self._transcript_signature: Optional[Tuple[Any, ...]] = None
        self._picker_view: Optional[PickerView] = None
        self._picker_session: Optional[Session] = None
        self._settings_session: Optional[Session] = None

        self.root = tk.Tk()
        self.root.title(APP_NAME)
        self.root.geometry(DEFAULT_WINDOW_GEOMETRY)
        self.root.minsize(MIN_WINDOW_WIDTH, MIN_WINDOW_HEIGHT)
        self.root.configure(bg=THEME['bg'])
        self.root.protocol('WM_DELETE_WINDOW', self.on_close)

        self._build_ui()
        self.fetcher.request(FetchRequest.catalog())
        self._kick()

    # ------------------------------------------------------------------
    # Layout

    def _build_ui(self) -> None:
        body = tk.Frame(self.root, bg=THEME['bg'])
        body.pack(fill='both', expand=True, padx=10, pady=10)

        self.side_panel = tk.Frame(body, bg=THEME['panel_bg'], width=360)
        self.side_panel.pack(side='left', fill='y', padx=(0, 12))
        self.side_panel.pack_propagate(False)

        tab_row = tk.Frame(self.side_panel, bg=THEME['panel_bg'])
        tab_row.pack(fill='x', padx=12, pady=(12, 8))
        self.tab_buttons: Dict[SessionTab, tk.Button] = {}
        for tab in SessionTab:
            button = tk.Button(tab_row, text=tab.value, command=lambda t=tab: self._select_tab(t), padx=10, pady=4, **BUTTON_STYLE)
            button.pack(side='left', padx=(0, 6))
            self.tab_buttons[tab] = button

        self.chats_frame = tk.Frame(self.side_panel, bg=THEME['panel_bg'], padx=12)
        new_button = tk.Button(self.chats_frame, text='➕ New Chat', command=self._on_new_session, pady=4, **BUTTON_STYLE)
        new_button.pack(fill='x', pady=(0, 8))
        self.session_list = tk.Frame(self.chats_frame, bg=THEME['panel_bg'])
        self.session_list.pack(fill='both', expand=True)

        self.model_outer = tk.Frame(self.side_panel, bg=THEME['panel_bg'])
        self.model_canvas = tk.Canvas(self.model_outer, bg=THEME['panel_bg'], highlightthickness=0, bd=0)
        scrollbar = tk.Scrollbar(self.model_outer, orient='vertical', command=self.model_canvas.yview)
        scrollbar.pack(side='right', fill='y')
        self.model_canvas.pack(side='left', fill='both', expand=True)
        self.model_canvas.configure(yscrollcommand=scrollbar.set)
        self.model_frame = tk.Frame(self.model_canvas, bg=THEME['panel_bg'], padx=12)
        self.model_window = self.model_canvas.create_window((0, 0), window=self.model_frame, anchor='nw')

        def _on_model_configure(event: tk.Event) -> None:
            self.model_canvas.configure(scrollregion=self.model_canvas.bbox('all'))
            self.model_canvas.itemconfig(self.model_window, width=max(self.model_canvas.winfo_width(), 1))

        self.model_frame.bind('<Configure>', _on_model_configure)

        self.picker_frame = tk.Frame(self.model_frame, bg=THEME['panel_bg'])
        self.picker_frame.pack(fill='x')
        self.settings_frame = tk.Frame(self.model_frame, bg=THEME['panel_bg'])
        self.settings_frame.pack(fill='x', pady=(8, 0))

        chat_column = tk.Frame(body, bg=THEME['bg'])
        chat_column.pack(side='left', fill='both', expand=True)

        self.transcript = scrolledtext.ScrolledText(
            chat_column,
            wrap='word',
            bg=THEME['bg'],
            fg=THEME['assistant_fg'],
            relief='flat',
            state=tk.DISABLED,
            font=('Helvetica', 12),
        )
        self.transcript.pack(fill='both', expand=True)
        self.transcript.tag_configure('user', foreground=THEME['user_fg'])
        self.transcript.tag_configure('assistant', foreground=THEME['assistant_fg'])
        self.transcript.tag_configure('error', foreground=THEME['system_fg'])
        self.transcript.tag_configure('speaking', background=THEME['selected_bg'])

        input_frame = tk.Frame(chat_column, bg=THEME['bg'])
        input_frame.pack(fill='x', pady=(8, 0))

        self.entry = tk.Text(input_frame, height=3, wrap='word', font=('Helvetica', 12), padx=10, pady=8, **ENTRY_STYLE)
        self.entry.configure(bg=THEME['input_bg'], fg=THEME['input_fg'])
        self.entry.pack(side='left', fill='both', expand=True)
        self.entry.bind('<Return>', self.on_enter_key)

        button_frame = tk.Frame(input_frame, bg=THEME['bg'])
        button_frame.pack(side='right', fill='y', padx=(6, 0))
        self.send_button = tk.Button(button_frame, text='Send', width=10, command=self.on_send, pady=6, **BUTTON_STYLE)
        self.send_button.pack(fill='x')
        self.stop_button = tk.Button(button_frame, text='Stop', width=10, command=self.on_stop, pady=6, **BUTTON_STYLE)
        self.stop_button.pack(fill='x', pady=(6, 0))
        self.speak_button = tk.Button(button_frame, text='Read aloud', width=10, command=self.on_speak_last, pady=6, **BUTTON_STYLE)
        self.speak_button.pack(fill='x', pady=(6, 0))
        if self.speech is None:
            self.speak_button.configure(state=tk.DISABLED)

        self.status_var = tk.StringVar(value=self._ready_status())
        status_label = tk.Label(chat_column, textvariable=self.status_var, anchor='w', bg=THEME['bg'], fg=THEME['status_fg'])
        status_label.pack(fill='x', pady=(6, 0))

        self._select_tab(self.directory.tab)

    def _ready_status(self) -> str:
        if self.speech is None:
            return 'Ready. (speech disabled)'
        return 'Ready.'

    # ------------------------------------------------------------------
    # Tick loop

    def request_repaint(self) -> None:
        self._repaint_requested = True

    def tick(self) -> None:
        self.tick_job = None
        self._repaint_requested = False

        self.fetcher.drain(self.directory)
        self.directory.tick(self.client, self.request_repaint)
        self._render()

        delay = REPAINT_TICK_MS if self._repaint_requested else IDLE_TICK_MS
        self.tick_job = self.root.after(delay, self.tick)

    def _kick(self) -> None:
        """Run the next tick right away after a user action."""
        if self.tick_job is not None:
            self.root.after_cancel(self.tick_job)
        self.tick_job = self.root.after(0, self.tick)

    def _render(self) -> None:
        self._render_session_list()
        self._render_transcript()
        session = self.directory.active_session
        if self.directory.tab is SessionTab.MODEL and session is not None:
            view = session.picker.show(self.fetcher.catalog, self.fetcher.request)
            if view != self._picker_view or session is not self._picker_session:
                self._picker_view = view
                self._picker_session = session
                self._render_picker(view)
            self._render_settings(session if view.has_selection else None)
        session_busy = session is not None and session.is_streaming
        self.send_button.configure(state=tk.DISABLED if session_busy else tk.NORMAL)
        self.stop_button.configure(state=tk.NORMAL if session_busy else tk.DISABLED)

    # ------------------------------------------------------------------
    # Sessions

    def _select_tab(self, tab: SessionTab) -> None:
        self.directory.tab = tab
        for key, button in self.tab_buttons.items():
            button.configure(bg=THEME['selected_bg'] if key is tab else THEME['button_bg'],
                             fg=THEME['panel_heading_fg'] if key is tab else THEME['button_fg'])
        if tab is SessionTab.CHATS:
            self.model_outer.pack_forget()
            self.chats_frame.pack(fill='both', expand=True)
        else:
            self.chats_frame.pack_forget()
            self.model_outer.pack(fill='both', expand=True)
            self._picker_view = None
        self._kick()

    def _on_new_session(self) -> None:
        index = self.directory.new_session(auto_speak=self.auto_speak)
        if self.fetcher.catalog:
            self.directory.sessions[index].picker.select_best_model(self.fetcher.catalog)
        self._kick()

    def _on_session_selected(self, index: int) -> None:
        self.directory.select(index)
        self._kick()

    def _render_session_list(self) -> None:
        signature = (tuple(self.directory.labels()), self.directory.active)
        if signature == self._sessions_signature:
            return
        self._sessions_signature = signature
        for child in self.session_list.winfo_children():
            child.destroy()
        for index, label in enumerate(self.directory.labels()):
            active = index == self.directory.active
            button = tk.Button(
                self.session_list,
                text=label,
                anchor='w',
                command=lambda i=index: self._on_session_selected(i),
                pady=4,
                **BUTTON_STYLE,
            )
            if active:
                button.configure(bg=THEME['selected_bg'], fg=THEME['panel_heading_fg'])
            button.pack(fill='x', pady=(0, 4))

    def _render_transcript(self) -> None:
        session = self.directory.active_session
        if session is None:
            signature: Tuple[Any, ...] = (None,)
        else:
            last = session.messages[-1]['content'] if session.messages else ''
            signature = (id(session), len(session.messages), len(last), session.speaking_index)
        if signature == self._transcript_signature:
            return
        self._transcript_signature = signature

        self.transcript.configure(state=tk.NORMAL)
        self.transcript.delete('1.0', tk.END)
        if session is not None:
            short_name = session.picker.selected.short_name or 'Assistant'
            for index, entry in enumerate(session.messages):
                role = entry.get('role', '')
                speaker = {'user': 'You', 'assistant': short_name}.get(role, 'Notice')
                tags = [role if role in {'user', 'assistant'} else 'error']
                if index == session.speaking_index:
                    tags.append('speaking')
                self.transcript.insert(tk.END, f'{speaker}: {entry["content"]}\n\n', tuple(tags))
        self.transcript.configure(state=tk.DISABLED)
        self.transcript.see(tk.END)

    # ------------------------------------------------------------------
    # Model tab

    def _render_picker(self, view: PickerView) -> None:
        for child in self.picker_frame.winfo_children():
            child.destroy()

        label_style = {'bg': THEME['panel_bg'], 'fg': THEME['panel_label_fg'], 'anchor': 'w'}
        row = tk.Frame(self.picker_frame, bg=THEME['panel_bg'])
        row.pack(fill='x', pady=(0, 8))
        if view.catalog_loading:
            tk.Label(row, text='⏳ Loading model list…', **label_style).pack(side='left')
        else:
            choice = tk.StringVar(value=view.selected_name)
            menu_button = tk.OptionMenu(row, choice, '')
            menu_button.configure(bg=THEME['entry_bg'], fg=THEME['entry_fg'], relief='flat', highlightthickness=0)
            menu = menu_button['menu']
            menu.delete(0, 'end')
            for entry in view.entries:
                menu.add_command(
                    label=f'{entry.name}    {entry.size_label}',
                    command=lambda name=entry.name: self._on_model_selected(name),
                )
            if view.empty_hint:
                menu.add_command(label=view.empty_hint, state=tk.DISABLED)
            menu_button.pack(side='left', fill='x', expand=True)
            tk.Button(row, text='⟳', command=self._on_refresh_models, padx=6, **BUTTON_STYLE).pack(side='left', padx=(6, 0))
            if view.empty_hint:
                tk.Label(self.picker_frame, text=view.empty_hint, **label_style).pack(fill='x')

        if not view.has_selection:
            return

        grid = tk.Frame(self.picker_frame, bg=THEME['panel_bg'])
        grid.pack(fill='x', pady=(4, 8))
        rows = [('Size', f'{view.size_label} ({view.size_tooltip})'), ('Modified', f'{view.modified_ago}\n{view.modified_at}')]
        for index, (name, value) in enumerate(rows):
            tk.Label(grid, text=name, **label_style).grid(row=index, column=0, sticky='nw', padx=(0, 12))
            tk.Label(grid, text=value, justify='left', wraplength=240, **label_style).grid(row=index, column=1, sticky='w')

        if view.info_loading:
            tk.Label(self.picker_frame, text='⏳ Loading model info…', **label_style).pack(fill='x')
            return
        for heading, text in view.info_sections:
            block = Collapsible(self.picker_frame, heading)
            block.pack(fill='x')
            viewer = scrolledtext.ScrolledText(block.body, height=8, wrap='none', font=('Courier', 10), **ENTRY_STYLE)
            viewer.insert(tk.END, text)
            viewer.configure(state=tk.DISABLED)
            viewer.pack(fill='x')

    def _on_model_selected(self, name: str) -> None:
        session = self.directory.active_session
        if session is None or not self.fetcher.catalog:
            return
        for model in self.fetcher.catalog:
            if model.name == name:
                session.picker.select(model)
                break
        self._kick()

    def _on_refresh_models(self) -> None:
        session = self.directory.active_session
        if session is not None:
            session.picker.refresh(self.fetcher.request)
        self.status_var.set('Refreshing model list...')
        self.root.after(1500, self._update_status_if_idle)

    def _render_settings(self, session: Optional[Session]) -> None:
        if session is self._settings_session:
            return
        self._settings_session = session
        for child in self.settings_frame.winfo_children():
            child.destroy()
        if session is None:
            return

        outer = Collapsible(self.settings_frame, 'Settings')
        outer.pack(fill='x')
        for editor in editors_for(session.picker.settings):
            if editor.spec.kind == 'mirostat':
                self._build_choice_editor(outer.body, editor)
            else:
                self._build_numeric_editor(outer.body, editor)
            if editor.spec.name == 'seed':
                self._build_stop_editor(outer.body, StopSequenceEditor(session.picker.settings))

    def _editor_shell(self, parent: tk.Widget, title: str, doc: str) -> Tuple[Collapsible, tk.BooleanVar, tk.Checkbutton]:
        box = Collapsible(parent, title)
        box.pack(fill='x')
        tk.Label(box.body, text=doc, wraplength=280, justify='left', bg=THEME['panel_bg'], fg=THEME['panel_label_fg']).pack(anchor='w')
        enabled_var = tk.BooleanVar()
        check = tk.Checkbutton(
            box.body,
            text='Enable',
            variable=enabled_var,
            bg=THEME['panel_bg'],
            fg=THEME['panel_label_fg'],
            selectcolor=THEME['entry_bg'],
            activebackground=THEME['panel_bg'],
        )
        check.pack(anchor='w')
        return box, enabled_var, check

    def _build_numeric_editor(self, parent: tk.Widget, editor: ToggleEditor) -> None:
        box, enabled_var, check = self._editor_shell(parent, editor.spec.label, editor.spec.doc)
        value_var = tk.StringVar()
        row = tk.Frame(box.body, bg=THEME['panel_bg'])
        row.pack(fill='x', pady=(2, 0))
        spin = tk.Spinbox(
            row,
            textvariable=value_var,
            from_=editor.spec.minimum,
            to=editor.spec.maximum,
            increment=editor.spec.step,
            width=14,
            **ENTRY_STYLE,
        )
        spin.pack(side='left')
        buttons = [
            tk.Button(row, text='max', command=lambda: act(editor.snap_max), padx=6, **BUTTON_STYLE),
            tk.Button(row, text='min', command=lambda: act(editor.snap_min), padx=6, **BUTTON_STYLE),
            tk.Button(row, text='reset', command=lambda: act(editor.reset), padx=6, **BUTTON_STYLE),
        ]
        for button in buttons:
            button.pack(side='left', padx=(4, 0))

        def sync() -> None:
            enabled_var.set(editor.enabled)
            value_var.set(str(editor.display_value))
            state = tk.NORMAL if editor.enabled else tk.DISABLED
            for widget in [spin, *buttons]:
                widget.configure(state=state)

        def act(action: Callable[[], None]) -> None:
            action()
            sync()

        def commit(_: Optional[tk.Event] = None) -> None:
            editor.set_text(value_var.get())
            sync()

        def step(direction: str) -> None:
            act(lambda: editor.nudge(1 if direction == 'up' else -1))

        check.configure(command=lambda: act(lambda: editor.set_enabled(enabled_var.get())))
        spin.configure(command=(spin.register(step), '%d'))
        spin.bind('<Return>', commit)
        spin.bind('<FocusOut>', commit)
        sync()

    def _build_choice_editor(self, parent: tk.Widget, editor: ToggleEditor) -> None:
        box, enabled_var, check = self._editor_shell(parent, editor.spec.label, editor.spec.doc)
        choice_var = tk.StringVar()
        labels = {mode.label: mode for mode in Mirostat}
        menu_button = tk.OptionMenu(box.body, choice_var, *labels, command=lambda label: act(lambda: editor.set_value(labels[label])))
        menu_button.configure(bg=THEME['entry_bg'], fg=THEME['entry_fg'], relief='flat', highlightthickness=0)
        menu_button.pack(anchor='w')

        def sync() -> None:
            enabled_var.set(editor.enabled)
            choice_var.set(Mirostat(editor.display_value).label)
            menu_button.configure(state=tk.NORMAL if editor.enabled else tk.DISABLED)

        def act(action: Callable[[], None]) -> None:
            action()
            sync()

        check.configure(command=lambda: act(lambda: editor.set_enabled(enabled_var.get())))
        sync()

    def _build_stop_editor(self, parent: tk.Widget, editor: StopSequenceEditor) -> None:
        box, enabled_var, check = self._editor_shell(parent, 'Stop Sequence', STOP_DOC)
        list_frame = tk.Frame(box.body, bg=THEME['panel_bg'])
        list_frame.pack(fill='x')
        row = tk.Frame(box.body, bg=THEME['panel_bg'])
        row.pack(fill='x', pady=(4, 0))
        add_button = tk.Button(row, text='➕ Add', command=lambda: act(editor.add), padx=6, **BUTTON_STYLE)
        add_button.pack(side='left')
        clear_button = tk.Button(row, text='Clear', command=lambda: act(editor.clear), padx=6, **BUTTON_STYLE)
        clear_button.pack(side='left', padx=(4, 0))

        def rebuild() -> None:
            for child in list_frame.winfo_children():
                child.destroy()
            enabled_var.set(editor.enabled)
            state = tk.NORMAL if editor.enabled else tk.DISABLED
            add_button.configure(state=state)
            clear_button.configure(state=state)
            if not editor.enabled:
                return
            if not editor.items:
                tk.Label(list_frame, text='No stop sequences set, add one.', bg=THEME['panel_bg'], fg=THEME['panel_label_fg']).pack(anchor='w')
            for index, text in enumerate(editor.items):
                line = tk.Frame(list_frame, bg=THEME['panel_bg'])
                line.pack(fill='x', pady=(2, 0))
                text_var = tk.StringVar(value=text)
                text_var.trace_add('write', lambda *_, i=index, v=text_var: editor.update(i, v.get()))
                tk.Entry(line, textvariable=text_var, **ENTRY_STYLE).pack(side='left', fill='x', expand=True)
                tk.Button(line, text='❌', command=lambda i=index: act(lambda: editor.remove(i)), **BUTTON_STYLE).pack(side='left', padx=(4, 0))

        def act(action: Callable[[], None]) -> None:
            action()
            rebuild()

        check.configure(command=lambda: act(lambda: editor.set_enabled(enabled_var.get())))
        rebuild()

    # ------------------------------------------------------------------
    # Chat actions

    def _update_status_if_idle(self) -> None:
        session = self.directory.active_session
        if session is not None and session.is_streaming:
            return
        self.status_var.set(self._ready_status())

    def on_enter_key(self, event) -> Optional[str]:
        if event.state & 0x0001:
            return None
        self.on_send()
        return 'break'

    def on_send(self) -> None:
        session = self.directory.active_session
        if session is None:
            return
        content = self.entry.get('1.0', tk.END).strip()
        if not content:
            return
        if not session.picker.has_selection:
            self.status_var.set('Pick a model in the Model tab first.')
            return
        if session.send(content):
            self.entry.delete('1.0', tk.END)
            self.status_var.set(f'Waiting for {session.picker.selected.short_name}...')
            self.root.after(1500, self._update_status_if_idle)
        self._kick()

    def on_stop(self) -> None:
        session = self.directory.active_session
        if session is None:
            return
        session.stop_streaming()
        session.stop_speaking()
        self.status_var.set('Stopping response...')
        self.root.after(1500, self._update_status_if_idle)

    def on_speak_last(self) -> None:
        session = self.directory.active_session
        if session is None:
            return
        if session.speaking_index is not None:
            session.stop_speaking()
        else:
            for index in range(len(session.messages) - 1, -1, -1):
                entry = session.messages[index]
                if entry.get('role') == 'assistant' and entry['content'].strip():
                    session.speak(index)
                    break
        self._kick()

    def on_close(self) -> None:
        for session in self.directory.sessions:
            session.stop_streaming()

        try:
            save_state(self.directory, self.args.state)
        except OSError as exc:
            logger.error(f'Failed to save state: {exc}')

        if self.speech is not None:
            try:
                self.speech.close()
            except Exception as exc:
                logger.error(f'Failed to shut down speech: {exc}')

        self.fetcher.close()
        self.client.close()

        if self.tick_job is not None:
            try:
                self.root.after_cancel(self.tick_job)
            except tk.TclError:
                pass
            self.tick_job = None

        self.root.destroy()

    def run(self) -> None:
        self.root.mainloop()

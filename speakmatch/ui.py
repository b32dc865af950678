# =========================
# Tkinter UI
# =========================
#
# One window: sidebar navigation on the left, the current screen on the
# right, and a status bar underneath that shows what the app is doing.
# Screens are rebuilt from scratch whenever the state behind them changes.

import base64
import datetime
import io
import sys
from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, Optional

import tkinter as tk
from tkinter import filedialog, messagebox, ttk

from PIL import Image, ImageTk

from .auth import EXPIRED_SAVE_MESSAGE, WRONG_PASSWORD_MESSAGE, AdminGate
from .config import (
    PLAYBACK_RATES,
    QUIZ_LANGUAGES,
    TTS_VOICES,
    data_dir,
    load_config,
)
from .editor import QuizDraft
from .errors import AdminRequiredError, BackupImportError, QuizValidationError
from .i18n import UI_LANGUAGES, strings
from .library import Library
from .models import Quiz, now_ms
from .player import QuizPlayer
from .scoring import ACCENT_ERROR, MISSING, format_time
from .speech import SpeechManager
from .storage import Store, backup_filename

TEMPLATE_LABEL = "Speak-to-Match (Image Describing)"
ADMIN_REQUIRED_MESSAGE = "Admin password required."


def load_image(source: str) -> Optional[Image.Image]:
    """
    Open a card image from a data URL or a file path.

    Remote URLs and anything Pillow cannot read give None, and the caller
    shows a placeholder instead.
    """
    if not source:
        return None
    try:
        if source.startswith("data:"):
            _header, _, payload = source.partition(",")
            return Image.open(io.BytesIO(base64.b64decode(payload)))
        path = Path(source)
        if path.exists():
            return Image.open(path)
    except (OSError, ValueError) as e:
        print(f"[App] Could not load image: {e}", file=sys.stderr)
    return None


def fit_photo(img: Image.Image, width: int, height: int) -> ImageTk.PhotoImage:
    """Scale a copy of img into width x height, keeping the aspect ratio."""
    resized = img.copy()
    resized.thumbnail((width, height), Image.Resampling.LANCZOS)
    return ImageTk.PhotoImage(resized)


class App(tk.Tk):
    """
    Main Tkinter application.

    - Routes between screens and applies the admin route guard.
    - Runs quizzes through QuizPlayer and the microphone through SpeechManager.
    - Polls the admin session and the listening watchdog from _ui_tick.
    """

    def __init__(self, directory: Optional[Path] = None):
        super().__init__()
        self.data_path = Path(directory) if directory else data_dir()
        self.config_data: dict = load_config(self.data_path)

        # Data and controllers
        self.store = Store(self.data_path)
        self.library = Library(self.store)
        self.gate = AdminGate(
            self.store,
            self.config_data["admin_password_sha256"],
            int(self.config_data["admin_timeout_ms"]),
        )
        self.t = strings(self.library.settings.uiLanguage)

        self.title(self.t["appName"])
        self.geometry("1120x720")
        self.minsize(960, 620)

        # Navigation state
        self.screen = "dashboard"
        self.active_quiz: Optional[Quiz] = None
        self.draft: Optional[QuizDraft] = None
        self.editing: Optional[str] = None
        self.player: Optional[QuizPlayer] = None
        self.results = None
        self.last_action = ""
        self.last_poll_ms = now_ms()

        # Quiz player state
        self.playback_rate = 1.0
        self.level_val = 0.0
        self.stuck_shown = False
        self.level_canvas: Optional[tk.Canvas] = None
        self.level_bar = None
        self._photos: Dict[str, ImageTk.PhotoImage] = {}
        self._login_win: Optional[tk.Toplevel] = None
        self._lightbox: Optional[tk.Toplevel] = None
        self._card_vars: Dict[str, Dict[str, tk.StringVar]] = {}

        # Speech backend; its callbacks come from worker threads
        self.speech = SpeechManager(
            language=self.library.settings.speechLang,
            on_end=lambda: self.after(0, self._on_listen_end),
            config=self.config_data,
            cache_dir=self.data_path,
        )
        self.speech.level_callback = self._on_level

        self._build()
        self._bind_shortcuts()
        self._navigate("dashboard")
        self.protocol("WM_DELETE_WINDOW", self._on_close)

        # Start periodic UI updates (admin expiry, watchdog, status bar)
        self._ui_tick()

    # ----- layout -----
    def _build(self):
        """
        Construct the fixed parts of the window: sidebar, content area, footer.
        """
        style = ttk.Style()
        style.configure("Title.TLabel", font=("Segoe UI", 18, "bold"))
        style.configure("Heading.TLabel", font=("Segoe UI", 12, "bold"))
        style.configure("Big.TLabel", font=("Segoe UI", 20, "bold"))
        style.configure("Muted.TLabel", foreground="#64748B")
        style.configure("Selected.TButton", foreground="#4F46E5")

        self.columnconfigure(0, weight=0)
        self.columnconfigure(1, weight=1)
        self.rowconfigure(0, weight=1)

        self.side = ttk.Frame(self, padding=10)
        self.side.grid(row=0, column=0, sticky="nsw")

        self.content = ttk.Frame(self, padding=14)
        self.content.grid(row=0, column=1, sticky="nsew")

        # Footer: dev banner style status bar
        foot = ttk.Frame(self, padding=(10, 4))
        foot.grid(row=1, column=0, columnspan=2, sticky="ew")
        self.status_var = tk.StringVar(value="Ready")
        ttk.Label(foot, textvariable=self.status_var, style="Muted.TLabel").pack(side="left")

        self._build_sidebar()

    def _build_sidebar(self):
        for w in self.side.winfo_children():
            w.destroy()
        t = self.t
        ttk.Label(self.side, text=t["appName"], style="Heading.TLabel", wraplength=170).pack(
            anchor="w", pady=(0, 12)
        )

        nav = [("dashboard", t["dashboard"]), ("study", t["study"]), ("stats", t["stats"])]
        if self.gate.is_admin:
            nav += [
                ("create", t["create"]),
                ("library", t["library"]),
                ("trash", t["trash"]),
                ("settings", t["settings"]),
            ]
        for screen, label in nav:
            ttk.Button(self.side, text=label, width=20,
                       command=lambda s=screen: self._navigate(s)).pack(anchor="w", pady=2)

        stats = self.library.stats
        box = ttk.Frame(self.side, padding=(0, 16, 0, 0))
        box.pack(anchor="w", fill="x")
        ttk.Label(box, text=f"{t['levelLabel']} {stats.level}", style="Heading.TLabel").pack(anchor="w")
        ttk.Label(box, text=f"{stats.xp} {t['xpLabel']}", style="Muted.TLabel").pack(anchor="w")

        if self.gate.is_admin:
            ttk.Button(self.side, text="Logout", command=self._logout).pack(anchor="w", side="bottom")
        else:
            ttk.Button(self.side, text="Admin Login",
                       command=lambda: self._open_login()).pack(anchor="w", side="bottom")

    # ----- keyboard shortcuts -----
    def _bind_shortcuts(self):
        """
        Bind keyboard shortcuts and activity tracking.
        """
        self.bind_all("<Control-d>", lambda e: self._navigate("dashboard"))
        self.bind_all("<Control-s>", lambda e: self._save_quiz() if self.screen == "edit" else None)
        self.bind_all("<Escape>", lambda e: self._close_lightbox())
        # Any click keeps the admin session alive.
        self.bind_all("<Button-1>", lambda e: self.gate.record_activity(), add="+")

    # ----- status / logging -----
    def _set_status(self, msg: str):
        """
        Update the status bar text.
        """
        self.status_var.set(msg)

    def log_action(self, action: str):
        print(f"[Action]: {action}")
        self.last_action = action
        self._refresh_status()

    def _refresh_status(self):
        quiz = self.active_quiz.name if self.active_quiz else "-"
        self._set_status(
            f"Screen: {self.screen} | Quiz: {quiz} | "
            f"Listening: {self.speech.listening} | Last: {self.last_action or '-'}"
        )

    # ----- navigation -----
    def _clear_content(self):
        for w in self.content.winfo_children():
            w.destroy()
        self.level_canvas = None
        self.level_bar = None
        self._card_vars = {}

    def _navigate(self, screen: str):
        """
        Show screen, unless the route guard sends the user to the dashboard.
        """
        if self.screen == "quiz-player" and screen != "quiz-player" and self.player:
            self._leave_player()
        if not self.gate.can_open(screen, editing=self.editing is not None):
            print(f"[App] Access denied to {screen}; redirecting to dashboard")
            screen = "dashboard"
        if screen != "edit":
            self.draft = None
            self.editing = None
        self.gate.record_activity()
        self.screen = screen
        self._clear_content()

        render = {
            "dashboard": self._show_dashboard,
            "study": lambda: self._show_library(manage=False),
            "library": lambda: self._show_library(manage=True),
            "trash": self._show_trash,
            "create": self._show_template_picker,
            "edit": self._show_editor,
            "settings": self._show_settings,
            "quiz-player": self._render_player,
            "quiz-summary": self._show_summary,
            "stats": self._show_card_stats,
        }[screen]
        render()
        self._refresh_status()

    def _header(self, title: str, subtitle: Optional[str] = None):
        ttk.Label(self.content, text=title, style="Title.TLabel").pack(anchor="w")
        if subtitle:
            ttk.Label(self.content, text=subtitle, style="Muted.TLabel").pack(anchor="w", pady=(2, 0))
        ttk.Separator(self.content).pack(fill="x", pady=10)

    def _scrollable(self) -> ttk.Frame:
        """
        A vertically scrolling frame filling the rest of the content area.
        """
        outer = ttk.Frame(self.content)
        outer.pack(fill="both", expand=True)
        canvas = tk.Canvas(outer, highlightthickness=0)
        bar = ttk.Scrollbar(outer, orient="vertical", command=canvas.yview)
        inner = ttk.Frame(canvas)
        inner.bind("<Configure>", lambda e: canvas.configure(scrollregion=canvas.bbox("all")))
        canvas.create_window((0, 0), window=inner, anchor="nw")
        canvas.configure(yscrollcommand=bar.set)
        canvas.pack(side="left", fill="both", expand=True)
        bar.pack(side="right", fill="y")
        return inner

    def _photo(self, key: str, source: str, width: int, height: int) -> Optional[ImageTk.PhotoImage]:
        """
        Cached PhotoImage for a card image; Tk drops images nobody references.
        """
        cache_key = f"{key}:{width}x{height}"
        if cache_key not in self._photos:
            img = load_image(source)
            if img is None:
                return None
            self._photos[cache_key] = fit_photo(img, width, height)
        return self._photos[cache_key]

    def _image_label(self, parent, key: str, source: str, width: int, height: int) -> ttk.Label:
        photo = self._photo(key, source, width, height)
        if photo is None:
            return ttk.Label(parent, text="[No image]", style="Muted.TLabel", width=20, anchor="center")
        return ttk.Label(parent, image=photo)

    # ----- admin -----
    def _admin(self, action: Callable[[], None], message: str = ADMIN_REQUIRED_MESSAGE):
        """
        Run action with admin rights, asking for the password first if needed.
        """
        try:
            self.gate.require(action)
        except AdminRequiredError:
            self._open_login(message)

    def _open_login(self, message: Optional[str] = None):
        """
        Open (or bring to front) the admin password prompt.

        Closing it without logging in discards any pending action.
        """
        if self._login_win is not None and self._login_win.winfo_exists():
            self._login_win.lift()
            return

        win = tk.Toplevel(self)
        self._login_win = win
        win.title("Admin Login")
        win.resizable(False, False)
        win.transient(self)

        pw_var = tk.StringVar()
        err_var = tk.StringVar()
        frame = ttk.Frame(win, padding=12)
        frame.grid(row=0, column=0, sticky="nsew")

        row = 0
        if message:
            ttk.Label(frame, text=message, foreground="#B45309").grid(
                row=row, column=0, columnspan=2, sticky="w", pady=(0, 8)
            )
            row += 1
        ttk.Label(frame, text="Password:").grid(row=row, column=0, sticky="e", padx=(0, 6))
        entry = ttk.Entry(frame, textvariable=pw_var, show="*", width=24)
        entry.grid(row=row, column=1, sticky="w")
        entry.focus_set()
        row += 1
        ttk.Label(frame, textvariable=err_var, foreground="#E11D48").grid(
            row=row, column=0, columnspan=2, sticky="w", pady=4
        )
        row += 1

        def submit(_evt=None):
            if self.gate.login(pw_var.get()):
                if win.winfo_exists():
                    win.destroy()
                self.log_action("Admin Login")
                self._build_sidebar()
            else:
                err_var.set(WRONG_PASSWORD_MESSAGE)
                pw_var.set("")

        def close():
            self.gate.cancel_pending()
            win.destroy()

        entry.bind("<Return>", submit)
        win.protocol("WM_DELETE_WINDOW", close)
        btns = ttk.Frame(frame)
        btns.grid(row=row, column=0, columnspan=2, pady=(4, 0))
        ttk.Button(btns, text="Login", command=submit).pack(side="left", padx=4)
        ttk.Button(btns, text="Cancel", command=close).pack(side="left", padx=4)

    def _logout(self):
        self.gate.logout()
        self.log_action("Admin Logout")
        self._build_sidebar()
        self._navigate("dashboard")

    # ----- dashboard -----
    def _show_dashboard(self):
        if not self.library.quizzes:
            self._show_welcome()
            return
        t = self.t
        visible = self.library.visible_quizzes(self.gate.is_admin)
        self._header(t["dashboard"])

        actions = ttk.Frame(self.content)
        actions.pack(anchor="w", pady=(0, 12))
        ttk.Button(actions, text=t["studyNow"], command=lambda: self._navigate("study")).pack(side="left")
        if self.gate.is_admin:
            ttk.Button(actions, text=t["createQuiz"],
                       command=lambda: self._navigate("create")).pack(side="left", padx=8)

        stats = self.library.stats
        tiles = ttk.Frame(self.content)
        tiles.pack(fill="x", pady=(0, 16))
        for col, (label, value) in enumerate([
            (t["streak"], str(stats.streak)),
            (t["sessions"], str(stats.totalSessions)),
            (t["accuracy"], f"{self.library.accuracy()}%"),
            (t["time"], format_time(self.library.practice_time_ms())),
        ]):
            tile = ttk.LabelFrame(tiles, text=label, padding=10)
            tile.grid(row=0, column=col, sticky="nsew", padx=(0, 10))
            tiles.columnconfigure(col, weight=1)
            ttk.Label(tile, text=value, style="Big.TLabel").pack(anchor="w")

        last = self.library.last_quiz(visible)
        if last:
            box = ttk.LabelFrame(self.content, text=t["continue"], padding=10)
            box.pack(fill="x", pady=(0, 16))
            ttk.Label(box, text=last.name, style="Heading.TLabel").pack(side="left")
            self._play_buttons(box, last).pack(side="right")

        focus = ttk.LabelFrame(self.content, text=t["weakest"], padding=10)
        focus.pack(fill="x")
        weakest = self.library.weakest_quizzes(visible)
        if not weakest:
            ttk.Label(focus, text=t["noQuizzes"], style="Muted.TLabel").pack(anchor="w")
        for quiz, avg in weakest:
            row = ttk.Frame(focus)
            row.pack(fill="x", pady=2)
            ttk.Label(row, text=quiz.name).pack(side="left")
            ttk.Label(row, text=f"{round(avg)}%", style="Muted.TLabel").pack(side="left", padx=8)
            ttk.Button(row, text="Practice", command=lambda q=quiz: self._play(q)).pack(side="right")

    def _show_welcome(self):
        self._header(f"Welcome to {self.t['appName']}",
                     "Practise speaking French by describing pictures.")
        box = ttk.LabelFrame(self.content, text="Have a backup?", padding=12)
        box.pack(fill="x", pady=(0, 16))
        ttk.Label(box, text="Restore your quizzes and progress from a .json backup.").pack(anchor="w")
        ttk.Button(box, text=self.t["import"], command=self._import).pack(anchor="w", pady=(8, 0))

        ttk.Label(self.content, text="New here?", style="Muted.TLabel").pack(anchor="w")
        ttk.Button(self.content, text=self.t["createQuiz"],
                   command=lambda: self._admin(lambda: self._navigate("create"))).pack(anchor="w", pady=6)

    def _play_buttons(self, parent, quiz: Quiz) -> ttk.Frame:
        """
        Resume/Restart when a valid session exists, otherwise Start.
        """
        frame = ttk.Frame(parent)
        session = self.library.resumable_session(quiz)
        if session:
            total = len(self.library.cards_for(quiz.id))
            ttk.Label(frame, text=f"Card {session.currentIndex + 1} of {total}",
                      style="Muted.TLabel").pack(side="left", padx=(0, 8))
            ttk.Button(frame, text="Resume", command=lambda: self._play(quiz)).pack(side="left")
            ttk.Button(frame, text="Restart",
                       command=lambda: self._play(quiz, reset=True)).pack(side="left", padx=(6, 0))
        else:
            ttk.Button(frame, text="Start", command=lambda: self._play(quiz, reset=True)).pack(side="left")
        return frame

    # ----- study / library / trash -----
    def _show_library(self, manage: bool):
        t = self.t
        self._header(t["library"] if manage else t["study"])
        quizzes = self.library.visible_quizzes(self.gate.is_admin)
        if not quizzes:
            ttk.Label(self.content, text=t["noQuizzes"], style="Muted.TLabel").pack(anchor="w")
            return

        inner = self._scrollable()
        for quiz in quizzes:
            row = ttk.Frame(inner, padding=(0, 6))
            row.pack(fill="x")
            info = ttk.Frame(row)
            info.pack(side="left")
            ttk.Label(info, text=quiz.name, style="Heading.TLabel").pack(anchor="w")
            details = f"{len(self.library.cards_for(quiz.id))} cards | {quiz.settings.language}"
            if self.gate.is_admin:
                details += " | " + ("Published" if quiz.published else "Draft")
            ttk.Label(info, text=details, style="Muted.TLabel").pack(anchor="w")

            self._play_buttons(row, quiz).pack(side="right", padx=(8, 0))
            if manage:
                ttk.Button(row, text=t["trash"],
                           command=lambda q=quiz: self._admin(lambda: self._trash(q))).pack(side="right")
                ttk.Button(row, text=t["edit"],
                           command=lambda q=quiz: self._admin(lambda: self._edit(q))).pack(side="right", padx=6)
            ttk.Separator(inner).pack(fill="x")

    def _trash(self, quiz: Quiz):
        self.library.move_to_trash(quiz.id)
        self.log_action(self.t["moveToTrash"])
        self._navigate(self.screen)

    def _show_trash(self):
        t = self.t
        self._header(t["trash"], "Items here are saved until you permanently delete them.")
        trashed = self.library.trashed_quizzes()
        if not trashed:
            ttk.Label(self.content, text="Trash is empty.", style="Muted.TLabel").pack(anchor="w")
            return
        for quiz in trashed:
            row = ttk.Frame(self.content, padding=(0, 6))
            row.pack(fill="x")
            ttk.Label(row, text=quiz.name, style="Heading.TLabel").pack(side="left")
            if quiz.deletedAt:
                deleted = format_time(now_ms() - quiz.deletedAt)
                ttk.Label(row, text=f"deleted {deleted} ago", style="Muted.TLabel").pack(side="left", padx=8)
            ttk.Button(row, text="Delete Forever",
                       command=lambda q=quiz: self._admin(lambda: self._delete_forever(q))).pack(side="right")
            ttk.Button(row, text="Restore",
                       command=lambda q=quiz: self._admin(lambda: self._restore(q))).pack(side="right", padx=6)

    def _restore(self, quiz: Quiz):
        self.library.restore(quiz.id)
        self.log_action(self.t["restore"])
        self._navigate("trash")

    def _delete_forever(self, quiz: Quiz):
        if not messagebox.askyesno("Delete quiz", self.t["deleteConfirm"]):
            return
        self.library.permanent_delete(quiz.id)
        self.log_action(self.t["permanentDelete"])
        self._navigate("trash")

    # ----- create / edit -----
    def _show_template_picker(self):
        self._header(self.t["create"], "Select a template to start creating your practice material.")
        box = ttk.LabelFrame(self.content, text=TEMPLATE_LABEL, padding=12)
        box.pack(fill="x")
        ttk.Label(box, text="Show a picture; the learner describes it out loud and is scored "
                            "against your target sentences.", wraplength=600).pack(anchor="w")
        ttk.Button(box, text="Use template", command=self._new_quiz).pack(anchor="w", pady=(8, 0))

    def _new_quiz(self):
        self.draft = QuizDraft()
        self.editing = self.draft.quiz_id
        self.log_action("Create Quiz")
        self._navigate("edit")

    def _edit(self, quiz: Quiz):
        self.draft = QuizDraft(quiz, self.library.cards_for(quiz.id))
        self.editing = quiz.id
        self.log_action(f"Edit Quiz: {quiz.name}")
        self._navigate("edit")

    def _show_editor(self):
        """
        Quiz form bound to self.draft. Card widgets write back on _sync_draft().
        """
        draft = self.draft
        if draft is None:
            self._navigate("library")
            return
        title = self.t["edit"] if draft.existing else self.t["createQuiz"]
        self._header(title, f"Template: {TEMPLATE_LABEL}")

        form = ttk.Frame(self.content)
        form.pack(fill="x", pady=(0, 8))
        lang_labels = {code: label for code, label in QUIZ_LANGUAGES}

        self.name_var = tk.StringVar(value=draft.name)
        self.lang_var = tk.StringVar(value=lang_labels.get(draft.language, draft.language))
        self.goal_var = tk.IntVar(value=draft.goal_score)
        self.random_var = tk.BooleanVar(value=draft.randomize)
        self.publish_var = tk.BooleanVar(value=draft.published)

        ttk.Label(form, text="Quiz Name *").grid(row=0, column=0, sticky="e", padx=6, pady=3)
        ttk.Entry(form, textvariable=self.name_var, width=40).grid(row=0, column=1, sticky="w")
        ttk.Label(form, text="Language").grid(row=1, column=0, sticky="e", padx=6, pady=3)
        ttk.Combobox(form, textvariable=self.lang_var, state="readonly",
                     values=[label for _, label in QUIZ_LANGUAGES]).grid(row=1, column=1, sticky="w")
        ttk.Label(form, text="Goal Score %").grid(row=2, column=0, sticky="e", padx=6, pady=3)
        ttk.Spinbox(form, from_=0, to=100, textvariable=self.goal_var, width=6).grid(row=2, column=1, sticky="w")
        ttk.Checkbutton(form, text="Randomize Order (shuffle cards for every new run)",
                        variable=self.random_var).grid(row=3, column=1, sticky="w", pady=2)
        ttk.Checkbutton(form, text="Publish to Students (visible in the Study tab)",
                        variable=self.publish_var).grid(row=4, column=1, sticky="w", pady=2)

        bottom = ttk.Frame(self.content)
        bottom.pack(side="bottom", fill="x", pady=(8, 0))
        ttk.Button(bottom, text="Add Card", command=self._add_card).pack(side="left")
        ttk.Button(bottom, text="Save Quiz", command=self._save_quiz).pack(side="right")
        ttk.Button(bottom, text="Cancel", command=self._cancel_edit).pack(side="right", padx=8)

        inner = self._scrollable()
        for idx, card in enumerate(draft.cards, start=1):
            self._card_form(inner, idx, card)

    def _card_form(self, parent, idx: int, card):
        box = ttk.LabelFrame(parent, text=f"Card #{idx}", padding=8)
        box.pack(fill="x", pady=4, padx=2)

        media = ttk.Frame(box)
        media.grid(row=0, column=0, rowspan=4, sticky="nw", padx=(0, 10))
        self._image_label(media, f"{card.id}:{len(card.image)}", card.image, 160, 110).pack()
        ttk.Button(media, text="Change Image",
                   command=lambda: self._pick_image(card.id)).pack(fill="x", pady=(4, 0))
        if card.audioOverride:
            ttk.Label(media, text="Audio uploaded", style="Muted.TLabel").pack()
            ttk.Button(media, text="Remove Audio",
                       command=lambda: self._clear_audio(card.id)).pack(fill="x")
        else:
            ttk.Button(media, text="Upload Audio",
                       command=lambda: self._pick_audio(card.id)).pack(fill="x", pady=(2, 0))

        card_vars = {
            "target": tk.StringVar(value=card.targetSentence),
            "variants": tk.StringVar(value=", ".join(card.acceptedSentences)),
            "preferred": tk.StringVar(value=card.preferredModelAnswer or ""),
            "hint": tk.StringVar(value=card.hint or ""),
        }
        self._card_vars[card.id] = card_vars
        labels = [
            ("target", "Target Sentence *"),
            ("variants", "Variants (comma separated)"),
            ("preferred", "Preferred Model (for labels/TTS)"),
            ("hint", "Hint"),
        ]
        for row, (key, label) in enumerate(labels):
            ttk.Label(box, text=label).grid(row=row, column=1, sticky="e", padx=6, pady=2)
            ttk.Entry(box, textvariable=card_vars[key], width=56).grid(row=row, column=2, sticky="w")

        ttk.Button(box, text="Remove Card",
                   command=lambda: self._remove_card(card.id)).grid(row=0, column=3, sticky="ne", padx=6)

    def _sync_draft(self):
        """
        Copy the form fields into the draft.
        """
        draft = self.draft
        codes = {label: code for code, label in QUIZ_LANGUAGES}
        draft.name = self.name_var.get()
        draft.language = codes.get(self.lang_var.get(), self.lang_var.get())
        try:
            draft.goal_score = max(0, min(100, int(self.goal_var.get())))
        except (tk.TclError, ValueError):
            print("[App] Ignoring invalid goal score", file=sys.stderr)
        draft.randomize = bool(self.random_var.get())
        draft.set_published(bool(self.publish_var.get()))
        for card_id, card_vars in self._card_vars.items():
            card = draft.card(card_id)
            card.targetSentence = card_vars["target"].get()
            draft.set_variants(card_id, card_vars["variants"].get())
            card.preferredModelAnswer = card_vars["preferred"].get().strip() or None
            card.hint = card_vars["hint"].get().strip() or None

    def _rerender_editor(self):
        self._sync_draft()
        self._navigate("edit")

    def _add_card(self):
        self._sync_draft()
        self.draft.add_card()
        self._navigate("edit")

    def _remove_card(self, card_id: str):
        self._sync_draft()
        try:
            self.draft.remove_card(card_id)
        except QuizValidationError as e:
            messagebox.showwarning("Remove card", "\n".join(e.errors))
            return
        self._navigate("edit")

    def _pick_image(self, card_id: str):
        path = filedialog.askopenfilename(
            title="Choose image",
            filetypes=[("Images", "*.png *.jpg *.jpeg *.gif *.webp *.bmp"), ("All files", "*.*")],
        )
        if not path:
            return
        try:
            self.draft.set_image_file(card_id, Path(path))
        except OSError as e:
            messagebox.showerror("Image", f"Could not read {path}: {e}")
            return
        self._rerender_editor()

    def _pick_audio(self, card_id: str):
        path = filedialog.askopenfilename(
            title="Choose audio",
            filetypes=[("Audio", "*.mp3 *.wav *.ogg"), ("All files", "*.*")],
        )
        if not path:
            return
        try:
            self.draft.set_audio_file(card_id, Path(path))
        except OSError as e:
            messagebox.showerror("Audio", f"Could not read {path}: {e}")
            return
        self._rerender_editor()

    def _clear_audio(self, card_id: str):
        self.draft.clear_audio(card_id)
        self._rerender_editor()

    def _save_quiz(self):
        """
        Validate the draft and save it; an expired admin session parks the
        save until the password is entered again.
        """
        if self.draft is None:
            return
        self._sync_draft()
        try:
            quiz, cards = self.draft.build()
        except QuizValidationError as e:
            messagebox.showerror("Please fix the following", "\n".join(e.errors))
            return
        self._admin(lambda: self._commit_quiz(quiz, cards), EXPIRED_SAVE_MESSAGE)

    def _commit_quiz(self, quiz: Quiz, cards):
        saved = self.library.save_quiz(quiz, cards)
        self.log_action(f"Saved quiz: {saved.name}")
        self.draft = None
        self.editing = None
        self._navigate("library")

    def _cancel_edit(self):
        self.draft = None
        self.editing = None
        self._navigate("library" if self.gate.is_admin else "dashboard")

    # ----- settings / backup -----
    def _show_settings(self):
        t = self.t
        settings = self.library.settings
        self._header(t["settings"])

        prefs = ttk.LabelFrame(self.content, text="Preferences", padding=10)
        prefs.pack(fill="x", pady=(0, 12))
        ui_labels = dict(UI_LANGUAGES)
        ui_codes = {label: code for code, label in UI_LANGUAGES}
        ui_var = tk.StringVar(value=ui_labels.get(settings.uiLanguage, "English"))
        voice_labels = dict(TTS_VOICES)
        voice_codes = {label: code for code, label in TTS_VOICES}
        voice_var = tk.StringVar(value=voice_labels.get(settings.ttsVoice or "", "Default"))

        ttk.Label(prefs, text="Interface Language").grid(row=0, column=0, sticky="e", padx=6, pady=3)
        ui_box = ttk.Combobox(prefs, textvariable=ui_var, state="readonly", values=list(ui_codes))
        ui_box.grid(row=0, column=1, sticky="w")
        ttk.Label(prefs, text="Text-to-Speech Voice").grid(row=1, column=0, sticky="e", padx=6, pady=3)
        voice_box = ttk.Combobox(prefs, textvariable=voice_var, state="readonly", values=list(voice_codes))
        voice_box.grid(row=1, column=1, sticky="w")

        def apply(_evt=None):
            updated = replace(
                self.library.settings,
                uiLanguage=ui_codes.get(ui_var.get(), "en"),
                ttsVoice=voice_codes.get(voice_var.get()) or None,
            )
            self.library.update_settings(updated)
            self.t = strings(updated.uiLanguage)
            self.title(self.t["appName"])
            self.log_action("Settings updated")
            self._build_sidebar()
            self._navigate("settings")

        ui_box.bind("<<ComboboxSelected>>", apply)
        voice_box.bind("<<ComboboxSelected>>", apply)

        data = ttk.LabelFrame(self.content, text="Data Management", padding=10)
        data.pack(fill="x", pady=(0, 12))
        ttk.Button(data, text=t["export"], command=self._export).grid(row=0, column=0, sticky="w", pady=2)
        ttk.Label(data, text="Download .json backup", style="Muted.TLabel").grid(row=0, column=1, sticky="w", padx=8)
        ttk.Button(data, text=t["import"], command=self._import).grid(row=1, column=0, sticky="w", pady=2)
        ttk.Label(data, text="Upload .json backup", style="Muted.TLabel").grid(row=1, column=1, sticky="w", padx=8)
        ttk.Label(data, wraplength=620, style="Muted.TLabel",
                  text="Note: images are stored as Base64 text so quizzes work offline and after "
                       "imports. This makes backups about a third larger than the raw files.").grid(
            row=2, column=0, columnspan=2, sticky="w", pady=(8, 0))

        ttk.Button(self.content, text="Logout", command=self._logout).pack(anchor="w")

    def _export(self):
        text, size = self.store.generate_backup()
        limit = int(self.config_data["export_warn_bytes"])
        if size > limit and not messagebox.askyesno(
            "Large backup",
            f"This backup is {size / (1024 * 1024):.1f} MB. Large files may be slow to save. Continue?",
        ):
            return
        path = filedialog.asksaveasfilename(defaultextension=".json", initialfile=backup_filename())
        if not path:
            return
        try:
            self.store.write_backup(text, Path(path))
        except OSError as e:
            messagebox.showerror("Export", f"Could not write {path}: {e}")
            return
        messagebox.showinfo("Export", f"Exported to {path}")
        self.log_action("Exported backup")

    def _import(self):
        path = filedialog.askopenfilename(filetypes=[("JSON backup", "*.json"), ("All files", "*.*")])
        if not path:
            return
        try:
            text = Path(path).read_text(encoding="utf-8")
            imported = self.store.import_backup(
                text, confirm=lambda msg: messagebox.askyesno("Import", msg)
            )
        except (OSError, UnicodeDecodeError) as e:
            messagebox.showerror("Import", f"Could not read {path}: {e}")
            return
        except BackupImportError as e:
            messagebox.showerror("Import", str(e))
            return
        if not imported:
            return
        self.library.reload()
        self.t = strings(self.library.settings.uiLanguage)
        self.log_action("Imported backup")
        messagebox.showinfo("Import", "Backup imported.")
        self._build_sidebar()
        self._navigate("dashboard")

    # ----- quiz player -----
    def _play(self, quiz: Quiz, reset: bool = False):
        launched = self.library.start_quiz(quiz, reset=reset)
        self.player = QuizPlayer(launched, xp_multiplier=self.library.settings.xpMultiplier)
        self.speech.language = quiz.settings.language
        if not self.speech.available:
            self.player.mark_unsupported()
        self.active_quiz = quiz
        self.stuck_shown = False
        self.log_action(f"{'Resume' if launched.resumed else 'Start'} quiz: {quiz.name}")
        self._navigate("quiz-player")

    def _render_player(self):
        """
        Draw the player for the current state of self.player.
        """
        if self.screen != "quiz-player":
            return
        self._clear_content()
        player = self.player
        if player is None:
            return

        top = ttk.Frame(self.content)
        top.pack(fill="x", pady=(0, 8))
        ttk.Button(top, text="Exit Quiz", command=self._exit_quiz).pack(side="left")
        ttk.Label(top, text=player.progress_label, style="Muted.TLabel").pack(side="right")
        bar = ttk.Progressbar(top, maximum=max(1, len(player.cards)), value=player.current_index + 1)
        bar.pack(side="left", fill="x", expand=True, padx=16)

        blocked = player.blocking_message()
        if blocked:
            ttk.Label(self.content, text=blocked, style="Heading.TLabel").pack(pady=60)
            ttk.Button(self.content, text=self.t["dashboard"],
                       command=lambda: self._navigate("dashboard")).pack()
            return

        card = player.card
        img = self._image_label(self.content, card.id, card.image, 560, 300)
        img.pack(pady=(0, 8))
        img.bind("<Button-1>", lambda e: self._open_lightbox(card))
        if card.hint:
            ttk.Label(self.content, text=f"Hint: {card.hint}", style="Muted.TLabel").pack()

        body = ttk.Frame(self.content)
        body.pack(fill="x", pady=8)
        if player.feedback is None:
            self._render_listen(body)
        else:
            self._render_feedback(body)

    def _render_listen(self, body):
        player = self.player
        ttk.Label(body, text=f"Describe what you see in {player.quiz.settings.language}",
                  style="Muted.TLabel").pack()
        if player.listening:
            ttk.Button(body, text="■ Stop", command=self._stop_listening).pack(pady=8)
            ttk.Label(body, text="Listening...", foreground="#E11D48").pack()
            self.level_canvas = tk.Canvas(body, width=180, height=10, bg="#E5E7EB", highlightthickness=0)
            self.level_canvas.pack(pady=4)
            self.level_bar = self.level_canvas.create_rectangle(0, 0, 0, 10, fill="#22C55E", width=0)
            if self.stuck_shown:
                ttk.Label(body, text="No input detected?", style="Muted.TLabel").pack()
                ttk.Button(body, text="Reset Microphone", command=self._reset_mic).pack()
        else:
            ttk.Button(body, text="🎤 Speak", command=self._start_listening).pack(pady=8)
        if player.feedback_error:
            ttk.Label(body, text=player.feedback_error, foreground="#D97706").pack()

    def _render_feedback(self, body):
        player = self.player
        fb = player.feedback
        goal = player.quiz.settings.goalScore

        ttk.Label(body, text="You said:", style="Muted.TLabel").pack()
        ttk.Label(body, text=f"\"{player.transcript or '...'}\"", style="Heading.TLabel").pack()

        scores = ttk.Frame(body)
        scores.pack(pady=8)
        match = ttk.LabelFrame(scores, text="Match Score", padding=8)
        match.pack(side="left", padx=8)
        ttk.Label(match, text=f"{fb.coreScore}%", style="Big.TLabel",
                  foreground="#10B981" if fb.coreScore >= goal else "#F59E0B").pack()
        accent = ttk.LabelFrame(scores, text="Accent", padding=8)
        accent.pack(side="left", padx=8)
        ttk.Label(accent, text=f"{fb.accentScore}%", style="Big.TLabel", foreground="#6366F1").pack()

        if fb.revealed:
            model = ttk.LabelFrame(body, text="Model Answer:", padding=8)
            model.pack(fill="x", pady=6)
            text = tk.Text(model, height=2, wrap="word", font=("Segoe UI", 13), relief="flat")
            text.tag_configure(ACCENT_ERROR, foreground="#D97706", underline=True)
            text.tag_configure(MISSING, foreground="#94A3B8")
            for d in fb.diff:
                text.insert("end", d["word"], d["status"])
                text.insert("end", " ")
            text.configure(state="disabled")
            text.pack(fill="x")

            audio = ttk.Frame(model)
            audio.pack(pady=(6, 0))
            ttk.Button(audio, text="🔊 Play", command=self._play_model_answer).pack(side="left", padx=(0, 8))
            for rate in PLAYBACK_RATES:
                ttk.Button(
                    audio, text=f"{rate}x", width=5,
                    style="Selected.TButton" if rate == self.playback_rate else "TButton",
                    command=lambda r=rate: self._set_rate(r),
                ).pack(side="left", padx=2)

        btns = ttk.Frame(body)
        btns.pack(pady=8)
        ttk.Button(btns, text="Retry", command=self._start_listening).pack(side="left", padx=6)
        if not fb.revealed:
            ttk.Button(btns, text="Reveal", command=self._reveal).pack(side="left", padx=6)
        else:
            ttk.Button(btns, text="Finish" if player.is_last else "Next",
                       command=self._next_card).pack(side="left", padx=6)

    def _start_listening(self):
        if self.player is None:
            return
        self.speech.cancel_audio()
        self.player.start_listening()
        self.stuck_shown = False
        self.log_action("Start listening")
        self.speech.start(
            on_result=lambda text: self.after(0, lambda: self._on_transcript(text)),
            on_error=lambda msg: self.after(0, lambda: self._on_listen_error(msg)),
        )
        self._render_player()

    def _stop_listening(self):
        if self.player is None:
            return
        self.player.stop_listening()
        self.speech.stop()
        self.log_action("Stop listening")
        self._render_player()

    def _reset_mic(self):
        self.log_action("Reset Microphone")
        self._stop_listening()
        self.after(100, self._start_listening)

    def _on_level(self, val: float):
        """
        Receive mic RMS level from the backend thread and store it.

        UI updates are performed in _ui_tick to stay on the Tk main thread.
        """
        self.level_val = max(0.0, float(val))

    def _on_transcript(self, text: str):
        if self.player is None:
            return
        attempt = self.player.process_result(text)
        if attempt is None:
            return
        self.library.add_attempt(attempt)
        self.log_action(f"Result: {attempt.coreScore}% ({'pass' if attempt.passed else 'fail'})")
        self._build_sidebar()
        self._render_player()

    def _on_listen_end(self):
        # A newer listen may already be running after a microphone reset.
        if self.player is None or self.speech.listening:
            return
        self.player.on_listen_end()
        self._render_player()

    def _on_listen_error(self, message: str):
        print(f"[Speech] Microphone error: {message}", file=sys.stderr)
        if self.player is None:
            return
        self.player.on_listen_error(message)
        self._render_player()

    def _reveal(self):
        self.player.reveal()
        self.log_action("Reveal answer")
        self._render_player()

    def _set_rate(self, rate: float):
        self.playback_rate = rate
        self._render_player()

    def _play_model_answer(self):
        card = self.player.card
        voice = self.library.settings.ttsVoice
        text = self.player.model_answer_text()
        if card.audioOverride:
            self.speech.play_data_url(card.audioOverride, self.playback_rate, fallback_text=text, voice=voice)
        else:
            self.speech.speak(text, voice, self.playback_rate)

    def _next_card(self):
        self.speech.cancel_audio()
        results = self.player.next()
        if results is None:
            self._render_player()
            return
        self.results = self.library.finish_quiz(self.player.quiz.id, results)
        self.player = None
        self.log_action("Quiz finished")
        self._build_sidebar()
        self._navigate("quiz-summary")

    def _exit_quiz(self):
        if not messagebox.askyesno("Exit Quiz?", "Your progress will be saved for later."):
            return
        self._navigate("dashboard")

    def _leave_player(self):
        """
        Stop audio and store the run so it can be resumed.
        """
        player = self.player
        self.player = None
        self.speech.cancel_audio()
        if player.listening:
            player.stop_listening()
            self.speech.stop()
        if player.card is not None and player.finished is None:
            self.library.pause_quiz(player.snapshot())
            self.log_action("Exit quiz (progress saved)")
        self._close_lightbox()

    def _open_lightbox(self, card):
        """
        Full size view of the card image; click or Escape closes it.
        """
        if self.player and self.player.listening:
            self._stop_listening()
        img = load_image(card.image)
        if img is None:
            return
        self._close_lightbox()
        win = tk.Toplevel(self, bg="black")
        self._lightbox = win
        win.title("Image")
        width = int(self.winfo_screenwidth() * 0.9)
        height = int(self.winfo_screenheight() * 0.85)
        photo = fit_photo(img, width, height)
        label = tk.Label(win, image=photo, bg="black", cursor="hand2")
        label.image = photo
        label.pack(padx=10, pady=10)
        label.bind("<Button-1>", lambda e: self._close_lightbox())

    def _close_lightbox(self):
        if self._lightbox is not None and self._lightbox.winfo_exists():
            self._lightbox.destroy()
        self._lightbox = None

    # ----- summary / card stats -----
    def _show_summary(self):
        results = self.results
        self._header("Quiz Complete!", "Magnifique ! You're making progress.")
        if results is None:
            return
        tiles = ttk.Frame(self.content)
        tiles.pack(fill="x", pady=(0, 16))
        for col, (label, value) in enumerate([
            ("XP Gained", f"+{results.xpGained}"),
            ("Accuracy", f"{results.accuracy}%"),
            ("Duration", format_time(results.timeSpent)),
        ]):
            tile = ttk.LabelFrame(tiles, text=label, padding=10)
            tile.grid(row=0, column=col, sticky="nsew", padx=(0, 10))
            tiles.columnconfigure(col, weight=1)
            ttk.Label(tile, text=value, style="Big.TLabel").pack()
        ttk.Button(self.content, text=self.t["dashboard"],
                   command=lambda: self._navigate("dashboard")).pack(anchor="w")
        self.active_quiz = None

    def _show_card_stats(self):
        self._header(self.t["stats"], "Review performance across all flashcards")
        stats = self.library.card_stats()
        if not stats:
            ttk.Label(self.content, text="No cards practiced yet.", style="Muted.TLabel").pack(anchor="w")
            return
        cols = ("sentence", "best", "attempts", "last")
        tree = ttk.Treeview(self.content, columns=cols, show="headings")
        for col, heading, width in [
            ("sentence", "Target Sentence", 460),
            ("best", "Best", 80),
            ("attempts", "Attempts", 90),
            ("last", "Last", 140),
        ]:
            tree.heading(col, text=heading)
            tree.column(col, width=width, anchor="w" if col == "sentence" else "center")
        for s in stats:
            last = "Never"
            if s.last_practiced:
                last = datetime.date.fromtimestamp(s.last_practiced / 1000).isoformat()
            tree.insert("", "end", values=(f"\"{s.card.targetSentence}\"", f"{s.best_core}%", s.attempts, last))
        tree.pack(fill="both", expand=True)

    # ----- periodic UI updates -----
    def _ui_tick(self):
        """
        Periodic UI ticker:

        - Polls the admin session and drops admin mode when it expired.
        - Shows "Reset Microphone" once listening looks stuck.
        - Updates the mic level bar and the status bar.
        """
        now = now_ms()
        if now - self.last_poll_ms >= int(self.config_data["admin_poll_ms"]):
            self.last_poll_ms = now
            if self.gate.poll():
                self.log_action("Admin Session Expired")
                self._build_sidebar()
                if not self.gate.can_open(self.screen, editing=self.editing is not None):
                    self._navigate("dashboard")

        player = self.player
        if player and self.screen == "quiz-player":
            stuck = player.is_stuck(int(self.config_data["watchdog_ms"]), now)
            if stuck != self.stuck_shown:
                self.stuck_shown = stuck
                self._render_player()

        if self.level_canvas is not None and self.level_canvas.winfo_exists():
            pct = max(0.0, min(1.0, self.level_val * 1.8))
            self.level_canvas.coords(self.level_bar, 0, 0, int(180 * pct), 10)

        self._refresh_status()

        # Schedule the next tick.
        self.after(100, self._ui_tick)

    def _on_close(self):
        if self.player:
            self._leave_player()
        self.destroy()

"""
UI strings in English and French, picked by Settings.uiLanguage.
"""

from typing import Dict

from .config import APP_NAME

EN = {
    "appName": APP_NAME,
    "dashboard": "Dashboard", "study": "Study", "create": "Create", "library": "Library",
    "stats": "Card Stats", "settings": "Settings", "streak": "Day Streak", "xp": "Total XP",
    "accuracy": "Avg Accuracy", "sessions": "Sessions", "time": "Practice Time",
    "createQuiz": "Create New Quiz", "studyNow": "Start Learning", "weakest": "Needs Focus",
    "noQuizzes": "No quizzes yet. Create one to start!", "continue": "Resume Last",
    "xpLabel": "XP", "levelLabel": "Level",
    "deleteConfirm": "Delete this quiz permanently? This cannot be undone.",
    "export": "Export Data", "import": "Import Backup", "edit": "Edit", "trash": "Trash",
    "moveToTrash": "Moved to Trash", "restore": "Restored quiz", "permanentDelete": "Permanently deleted",
}

FR = {
    "appName": APP_NAME,
    "dashboard": "Tableau", "study": "Étudier", "create": "Créer", "library": "Bibliothèque",
    "stats": "Stats Cartes", "settings": "Paramètres", "streak": "Série de jours", "xp": "Total XP",
    "accuracy": "Précision Moy.", "sessions": "Sessions", "time": "Temps de pratique",
    "createQuiz": "Créer un quiz", "studyNow": "Commencer", "weakest": "À réviser",
    "noQuizzes": "Aucun quiz. Créez-en un pour commencer !", "continue": "Reprendre",
    "xpLabel": "XP", "levelLabel": "Niveau",
    "deleteConfirm": "Supprimer ce quiz définitivement ? Cette action est irréversible.",
    "export": "Exporter", "import": "Importer", "edit": "Modifier", "trash": "Corbeille",
    "moveToTrash": "Mis à la corbeille", "restore": "Quiz restauré", "permanentDelete": "Supprimé définitivement",
}

UI_LANGUAGES = [("en", "English"), ("fr", "Français")]


def strings(lang: str) -> Dict[str, str]:
    """
    Return the string table for lang; anything but "fr" gets English.
    """
    return FR if lang == "fr" else EN

"""
Console logging for the panel build.

Colour per level, highlighted counts/percentages/file paths, and bold stage
prefixes ("Wave 2:", "Link:", "Prenatal:", "Sanity:") so a long run can be
skimmed. Configure once from the entry point; library modules only call
``logging.getLogger(__name__)``.
"""
from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Optional


# ANSI escape codes
class Colors:
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[2m'

    BLACK = '\033[30m'
    GREEN = '\033[32m'
    YELLOW = '\033[33m'
    BLUE = '\033[34m'
    MAGENTA = '\033[35m'
    CYAN = '\033[36m'
    WHITE = '\033[37m'

    BRIGHT_RED = '\033[91m'
    BRIGHT_GREEN = '\033[92m'
    BRIGHT_YELLOW = '\033[93m'
    BRIGHT_CYAN = '\033[96m'

    BG_RED = '\033[41m'


LEVEL_COLORS = {
    'DEBUG': Colors.DIM + Colors.WHITE,
    'INFO': Colors.GREEN,
    'WARNING': Colors.YELLOW,
    'ERROR': Colors.BRIGHT_RED,
    'CRITICAL': Colors.BG_RED + Colors.WHITE,
}


KEYWORD_COLORS = {
    'completed': Colors.BRIGHT_GREEN,
    'failed': Colors.BRIGHT_RED,
    'error': Colors.BRIGHT_RED,
    'warning': Colors.YELLOW,
    'missing': Colors.YELLOW,
    'dropped': Colors.YELLOW,
    'unrecognized': Colors.YELLOW,
    'implausible': Colors.YELLOW,
    'loaded': Colors.GREEN,
    'saved': Colors.GREEN,
    'built': Colors.GREEN,
    'linked': Colors.BLUE,
    'joined': Colors.BLUE,
    'stitched': Colors.BLUE,
    'standardized': Colors.BLUE,
}


STAGE_PREFIXES = {
    'Link:': Colors.BLUE,
    'Prenatal:': Colors.MAGENTA,
    'Stitch:': Colors.CYAN,
    'Sanity:': Colors.CYAN,
    'Quality:': Colors.YELLOW,
}


_FILE_PATTERN = r'((?:/|)(?:[^/\s]+/)*[^/\s]+\.(?:csv(?:\.gz)?|dta|json|ya?ml|parquet|log))'


class ColorFormatter(logging.Formatter):
    """Custom formatter to add colors to log messages"""

    def __init__(self, root: Optional[Path] = None):
        super().__init__()
        self.root = root

    def format(self, record):
        timestamp = f"{Colors.DIM}{Colors.BLACK}{self.formatTime(record)}{Colors.RESET}"
        level_color = LEVEL_COLORS.get(record.levelname, Colors.WHITE)
        level_text = f"{level_color}{record.levelname}{Colors.RESET}"
        message = self.enhance_message(record.getMessage())
        return f"{timestamp} - {level_text} - {message}"

    def _shorten_paths(self, message: str) -> str:
        if self.root is None:
            return message
        root = str(self.root)

        def _repl(m: re.Match) -> str:
            p = m.group(1)
            if p.startswith(root):
                return os.path.relpath(p, root).replace(os.sep, '/')
            return p
        return re.sub(_FILE_PATTERN, _repl, message)

    def enhance_message(self, message: str) -> str:
        """Add smart highlighting to important parts of log messages."""
        message = self._shorten_paths(message)

        # Row counts with thousands separators, then percentages
        message = re.sub(r'(\d{1,3}(?:,\d{3})+)', f'{Colors.BRIGHT_CYAN}\\1{Colors.RESET}', message)
        message = re.sub(r'(\d+\.?\d*%)', f'{Colors.BRIGHT_YELLOW}\\1{Colors.RESET}', message)
        message = re.sub(_FILE_PATTERN, f'{Colors.CYAN}\\1{Colors.RESET}', message)

        for keyword, color in KEYWORD_COLORS.items():
            pattern = re.compile(rf'\b({keyword})\b', re.IGNORECASE)
            message = pattern.sub(f'{color}\\1{Colors.RESET}', message)

        message = re.sub(r'^(Wave \d+:)', f'{Colors.BOLD}{Colors.GREEN}\\1{Colors.RESET}', message)
        for prefix, color in STAGE_PREFIXES.items():
            if message.startswith(prefix):
                message = message.replace(prefix, f'{Colors.BOLD}{color}{prefix}{Colors.RESET}', 1)
        return message


def setup_colored_logging(level: int = logging.INFO, root: Optional[Path] = None) -> logging.Logger:
    """Configure colored console logging on the root logger."""
    # Remove existing handlers to avoid duplicates
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(ColorFormatter(root=root))
    logging.root.addHandler(console_handler)
    logging.root.setLevel(level)
    return logging.getLogger("maternal_panel")


def add_file_handler(log_path: Path) -> logging.FileHandler:
    """Mirror the console log to a plain-text file."""
    log_path.parent.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(log_path)
    fh.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s"))
    logging.root.addHandler(fh)
    return fh

#!/usr/bin/env python3

import os
import shlex
import shutil
import signal
import subprocess
import gettext
import locale
import logging
from dataclasses import dataclass, field

import yaml

# -------------------------
# Set up locale and translation
# -------------------------

try:
    locale.setlocale(locale.LC_ALL, '')
    localedir = '/usr/share/locale'
    gettext.bindtextdomain('pkglook', localedir)
    gettext.textdomain('pkglook')
    _ = gettext.gettext
    ngettext = gettext.ngettext
except Exception:
    print("Warning: Could not set up locale. Using fallback translations.")
    _ = lambda s: s
    ngettext = lambda s, p, n: s if n == 1 else p

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(log_file=None, level=logging.DEBUG):
    """
    Route the pkglook loggers to a file, or silence them.

    The terminal is in raw mode for the whole session, so nothing may be
    written to stdout/stderr by a log handler.
    """
    root = logging.getLogger()
    if log_file:
        path = os.path.expanduser(log_file)
        try:
            handler = logging.FileHandler(path, encoding="utf-8")
        except OSError as e:
            raise ConfigError(_("Could not open log file {}: {}").format(path, e)) from e
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.setLevel(level)
    else:
        # Keeps logging's last-resort stderr handler out of the raw terminal.
        handler = logging.NullHandler()
    root.addHandler(handler)
    return handler


# -------------------------
# Errors
# -------------------------

class PkgLookError(Exception):
    """Base class for errors reported to the user before the session starts."""


class ProviderUnavailableError(PkgLookError):
    """No usable provider, or the requested one is not available."""


class ConfigError(PkgLookError):
    """The settings file could not be read or holds invalid values."""


# -------------------------
# Application Metadata/About Info
# -------------------------
class AboutInfo:
    """
    Centralized metadata for the package search frontend.
    """
    @staticmethod
    def get_program_name():
        return "pkglook"

    @staticmethod
    def get_description():
        return _("Universal interactive package search tool")

    @staticmethod
    def get_version():
        return "0.9.2"

    @staticmethod
    def get_version_text():
        return _("{} version {}").format(AboutInfo.get_program_name(), AboutInfo.get_version())

    @staticmethod
    def get_controls_text():
        """Returns the translated key legend used by --help."""
        return "\n".join([
            _("Controls:"),
            _("  Type       - Search for packages"),
            _("  Up/Down    - Navigate results"),
            _("  PgUp/PgDn  - Navigate by page"),
            _("  Home/End   - Jump to the top or bottom of the list"),
            _("  Enter      - Install selected package"),
            _("  Escape     - Clear search"),
            _("  Ctrl+X/Q   - Quit"),
        ])


# -------------------------
# Settings
# -------------------------
class Settings:
    """
    User settings loaded from a YAML file.

    Every key is optional; missing keys keep the defaults below.
    """

    DEFAULTS = {
        "provider": None,
        "debounce_ms": 400,
        "page_size": 10,
        "description_width": 62,
        "color": "auto",
        "log_file": None,
        "elevation": None,
        "providers": [],
    }

    COLOR_MODES = ("auto", "always", "never")

    def __init__(self, values=None, path=None):
        self.path = path
        merged = dict(self.DEFAULTS)
        merged.update(values or {})
        self._validate(merged)
        self.provider = merged["provider"]
        self.debounce_ms = merged["debounce_ms"]
        self.page_size = merged["page_size"]
        self.description_width = merged["description_width"]
        self.color = merged["color"]
        self.log_file = merged["log_file"]
        self.elevation = merged["elevation"]
        self.providers = merged["providers"]

    @property
    def debounce_seconds(self):
        return self.debounce_ms / 1000.0

    def _validate(self, values):
        unknown = sorted(set(values) - set(self.DEFAULTS))
        if unknown:
            raise ConfigError(_("Unknown setting(s): {}").format(", ".join(unknown)))

        for key in ("debounce_ms", "page_size", "description_width"):
            value = values[key]
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(_("Setting '{}' must be an integer").format(key))
        if values["debounce_ms"] < 0:
            raise ConfigError(_("Setting 'debounce_ms' must not be negative"))
        if values["page_size"] < 1:
            raise ConfigError(_("Setting 'page_size' must be at least 1"))
        if values["description_width"] < 4:
            raise ConfigError(_("Setting 'description_width' must be at least 4"))

        if values["color"] not in self.COLOR_MODES:
            raise ConfigError(_("Setting 'color' must be one of: {}").format(", ".join(self.COLOR_MODES)))

        if values["provider"] is not None and not isinstance(values["provider"], str):
            raise ConfigError(_("Setting 'provider' must be a string"))
        if values["log_file"] is not None and not isinstance(values["log_file"], str):
            raise ConfigError(_("Setting 'log_file' must be a path"))

        elevation = values["elevation"]
        if elevation is not None:
            if isinstance(elevation, str):
                values["elevation"] = shlex.split(elevation)
            elif not (isinstance(elevation, list) and all(isinstance(x, str) for x in elevation)):
                raise ConfigError(_("Setting 'elevation' must be a command or a list of strings"))

        providers = values["providers"]
        if providers is None:
            values["providers"] = []
        elif not isinstance(providers, list) or not all(isinstance(p, dict) for p in providers):
            raise ConfigError(_("Setting 'providers' must be a list of mappings"))

    @staticmethod
    def default_path():
        env_path = os.environ.get("PKGLOOK_CONFIG")
        if env_path:
            return os.path.expanduser(env_path)
        config_home = os.environ.get("XDG_CONFIG_HOME") or os.path.expanduser("~/.config")
        return os.path.join(config_home, "pkglook", "config.yaml")

    @classmethod
    def load(cls, path=None):
        """
        Load settings from `path`, or from the default location.

        An explicitly given path must exist; a missing default file
        simply yields the defaults.
        """
        explicit = path is not None
        path = os.path.expanduser(path) if explicit else cls.default_path()

        if not os.path.exists(path):
            if explicit:
                raise ConfigError(_("Settings file not found: {}").format(path))
            logger.debug("No settings file at %s, using defaults", path)
            return cls(path=None)

        try:
            with open(path, 'r', encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(_("Could not read settings file {}: {}").format(path, e)) from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(_("Settings file {} must contain a mapping").format(path))

        logger.debug("Loaded settings from %s", path)
        return cls(data, path=path)


# -------------------------
# Core Command Runner
# -------------------------
class CommandRunner:
    """
    Handles execution of provider commands: captured runs for searches and
    terminal-inheriting runs for installs, including elevation.
    """
    def __init__(self, elevation_cmd=None):
        """
        :param elevation_cmd: List like ["sudo"] or None
        """
        self.elevation_cmd = elevation_cmd

    @staticmethod
    def get_elevation_cmd():
        if os.getuid() == 0:
            return None
        elif shutil.which("sudo"):
            return ["sudo"]
        elif shutil.which("doas"):
            return ["doas"]
        return None

    def elevate(self, cmd_list):
        final = list(cmd_list)
        if os.getuid() != 0:
            if self.elevation_cmd:
                final = list(self.elevation_cmd) + final
            else:
                raise RuntimeError(_("No elevation helper available"))
        return final

    def run_sync(self, cmd_list, require_root=False):
        """
        Runs a command synchronously and returns the result object.
        """
        final = self.elevate(cmd_list) if require_root else list(cmd_list)
        logger.debug("Running %s", final)
        try:
            return subprocess.run(final, text=True, stdout=subprocess.PIPE,
                                  stderr=subprocess.PIPE, stdin=subprocess.DEVNULL)
        except OSError as e:
            logger.warning("Could not run %s: %s", final[0], e)
            return subprocess.CompletedProcess(final, 1, stdout="", stderr=str(e))

    def run_interactive(self, command):
        """
        Runs a shell command line verbatim, inheriting the terminal, and
        waits for it. Returns the exit status (-1 if it could not start).

        Ctrl-C while it runs is left to the command; pkglook itself keeps
        running, as with system(3).
        """
        logger.info("Running interactive command: %s", command)
        previous = self._hold_sigint()
        try:
            return subprocess.run(command, shell=True).returncode
        except OSError as e:
            logger.error("Could not run %r: %s", command, e)
            return -1
        finally:
            if previous is not None:
                signal.signal(signal.SIGINT, previous)

    @staticmethod
    def _hold_sigint():
        # Caught signals revert to SIG_DFL in the child on exec, SIG_IGN would not.
        try:
            return signal.signal(signal.SIGINT, lambda signum, frame: None)
        except ValueError:
            # Not the main thread.
            return None


# -------------------------
# Package records
# -------------------------
@dataclass
class Package:
    name: str
    version: str = ""
    description: str = ""
    source: str = ""
    installed: bool = False

    @property
    def key(self):
        """Identity used for de-duplication."""
        return (self.name, self.source)


@dataclass
class SearchResult:
    packages: list = field(default_factory=list)
    error: str = None

    @property
    def has_error(self):
        return bool(self.error)

    @classmethod
    def failure(cls, message):
        return cls(packages=[], error=message)


# -------------------------
# SearchProcessor - shared result post-processing for providers
# -------------------------
class SearchProcessor:
    """Ordering and de-duplication applied to every provider's results"""

    @staticmethod
    def dedupe_packages(packages):
        """Drop later packages sharing a (name, source) identity with an earlier one."""
        seen = set()
        unique = []
        for pkg in packages:
            if pkg.key in seen:
                continue
            seen.add(pkg.key)
            unique.append(pkg)
        return unique

    @staticmethod
    def relevance_rank(pkg, query):
        name = pkg.name.lower()
        # Category-qualified names ("apps/vim") match on the last segment too.
        short = name.rsplit("/", 1)[-1]
        q = query.lower()
        if q in (name, short):
            rank = 0
        elif name.startswith(q) or short.startswith(q):
            rank = 1
        elif q in name:
            rank = 2
        else:
            rank = 3
        return (rank, len(short))

    @staticmethod
    def sort_by_relevance(packages, query):
        """
        Exact name matches first, then prefix matches, then substring
        matches, then everything else; shorter names first within a group.
        """
        if not query:
            return list(packages)
        return sorted(packages, key=lambda pkg: SearchProcessor.relevance_rank(pkg, query))

    @staticmethod
    def process(packages, query):
        return SearchProcessor.sort_by_relevance(SearchProcessor.dedupe_packages(packages), query)

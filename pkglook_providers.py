#!/usr/bin/env python3

import re
import json
import shlex
import shutil
import logging

from pkglook_core import (
    _,
    CommandRunner,
    ConfigError,
    Package,
    ProviderUnavailableError,
    SearchProcessor,
    SearchResult,
)

logger = logging.getLogger(__name__)

TOO_MANY_RESULTS = "Too many results! Try a more specific search."


# -------------------------
# Provider capability
# -------------------------
class Provider:
    """
    A package source. The session only ever talks to this interface:
    name, is_available(), search(query), install_command(package) and
    source_color(source).
    """

    name = None

    # Style names understood by pkglook_term.style()
    SOURCE_COLORS = {
        "core": "cyan",
        "extra": "green",
        "community": "yellow",
        "multilib": "magenta",
        "aur": "bright_blue",
    }
    DEFAULT_SOURCE_COLOR = "white"

    def is_available(self):
        raise NotImplementedError

    def search(self, query):
        raise NotImplementedError

    def install_command(self, pkg):
        raise NotImplementedError

    def source_color(self, source):
        return self.SOURCE_COLORS.get(source, self.DEFAULT_SOURCE_COLOR)

    def __repr__(self):
        return "<{} {}>".format(type(self).__name__, self.name)


# -------------------------
# Luet
# -------------------------
class LuetProvider(Provider):
    """Searches Luet repositories through `luet search -o json`."""

    name = "luet"
    binary = "luet"

    SOURCE_COLORS = {
        "luet": "cyan",
        "mocaccino-repository-index": "cyan",
        "mocaccino-desktop-stable": "green",
        "mocaccino-os-commons-stable": "bright_blue",
        "mocaccino-extra-stable": "yellow",
        "mocaccino-community-stable": "magenta",
    }
    DEFAULT_SOURCE_COLOR = "blue"

    HIDDEN_CATEGORIES = ("entity",)

    # Repository and repo-updater meta-packages; never worth installing from a search
    HIDDEN_PACKAGES = frozenset((
        "repository/mocaccino-desktop",
        "repository/mocaccino-os-commons",
        "repository/mocaccino-extra",
        "repository/mocaccino-community",
        "repository/luet",
        "repository/mocaccino-repository-index",
        "repository/mocaccino-desktop-stable",
        "repository/mocaccino-os-commons-stable",
        "repository/mocaccino-extra-stable",
        "repository/livecd",
        "repository/mocaccino-stage3",
        "repository/mocaccino-portage",
        "repository/mocaccino-portage-stable",
        "repository/mocaccino-kernel",
        "repository/mocaccino-kernel-stable",
        "repository/mocaccino-extra-arm",
        "repository/mocaccino-musl-universe",
        "repository/mocaccino-musl-universe-stable",
        "repository/mocaccino-micro",
        "repository/mocaccino-micro-stable",
        "repo-updater/mocaccino-micro-stable",
        "repo-updater/mocaccino-desktop-stable",
        "repo-updater/mocaccino-community-stable",
        "kernel-5.9/debian-full",
    ))

    def __init__(self, command_runner):
        self.command_runner = command_runner

    def is_available(self):
        return shutil.which(self.binary) is not None

    def search(self, query):
        if not query:
            return SearchResult()

        # Escape regex special characters, luet treats the query as a regexp
        search_cmd = [self.binary, "search", "-o", "json", "-q", re.escape(query)]
        res = self.command_runner.run_sync(search_cmd)
        if res.returncode != 0:
            logger.warning("Search error: %s", (res.stderr or "").strip())
            return SearchResult.failure(_("Error executing the search command"))

        output = (res.stdout or "").strip()
        if not output:
            return SearchResult()

        try:
            data = json.loads(output)
        except json.JSONDecodeError:
            logger.warning("Search error: invalid JSON from luet")
            return SearchResult.failure(_("Invalid JSON output"))

        records = data.get("packages") if isinstance(data, dict) else None
        packages = []
        for record in records or []:
            pkg = self._to_package(record)
            if pkg is not None:
                packages.append(pkg)
        return SearchResult(packages=SearchProcessor.process(packages, query))

    def is_hidden(self, category, name):
        if category in self.HIDDEN_CATEGORIES:
            return True
        return "{}/{}".format(category, name) in self.HIDDEN_PACKAGES

    def _to_package(self, record):
        if not isinstance(record, dict):
            return None
        category = str(record.get("category") or "")
        name = str(record.get("name") or "")
        if not name or self.is_hidden(category, name):
            return None
        return Package(
            name="{}/{}".format(category, name) if category else name,
            version=str(record.get("version") or ""),
            description=str(record.get("description") or ""),
            source=str(record.get("repository") or ""),
            installed=bool(record.get("installed", False)),
        )

    def install_command(self, pkg):
        cmd = [self.binary, "install", "-y", pkg.name]
        try:
            cmd = self.command_runner.elevate(cmd)
        except RuntimeError:
            logger.warning("No elevation helper found, running luet unprivileged")
        return shlex.join(cmd)


# -------------------------
# Command providers (configured in the settings file)
# -------------------------
class CommandProvider(Provider):
    """
    A provider described in the settings file. Its search command must
    print JSON: {"packages": [...]}, a plain list, or one object per line.

    Example::

        providers:
          - name: pip
            binary: pip-search-json
            search: pip-search-json {query}
            install: pip install --user {name}
            colors: {pypi: yellow}
    """

    REQUIRED_KEYS = ("name", "search", "install")
    KNOWN_KEYS = REQUIRED_KEYS + ("binary", "colors", "too_many", "require_root", "source")

    def __init__(self, definition, command_runner):
        self._validate(definition)
        self.name = definition["name"]
        search = definition["search"]
        self.search_argv = shlex.split(search) if isinstance(search, str) else list(search)
        self.install_template = definition["install"]
        self.binary = definition.get("binary") or self.search_argv[0]
        self.too_many_marker = definition.get("too_many")
        self.require_root = bool(definition.get("require_root", False))
        self.default_source = definition.get("source") or self.name
        self.colors = dict(definition.get("colors") or {})
        self.command_runner = command_runner

    @classmethod
    def _validate(cls, definition):
        label = definition.get("name") or _("(unnamed)")
        missing = [key for key in cls.REQUIRED_KEYS if not definition.get(key)]
        if missing:
            raise ConfigError(_("Provider '{}' is missing: {}").format(label, ", ".join(missing)))
        unknown = sorted(set(definition) - set(cls.KNOWN_KEYS))
        if unknown:
            raise ConfigError(_("Provider '{}' has unknown key(s): {}").format(label, ", ".join(unknown)))
        if not isinstance(definition["name"], str):
            raise ConfigError(_("Provider name must be a string"))
        search = definition["search"]
        if not (isinstance(search, str) or (isinstance(search, list) and all(isinstance(s, str) for s in search))):
            raise ConfigError(_("Provider '{}': 'search' must be a command or a list of strings").format(label))
        if not isinstance(definition["install"], str):
            raise ConfigError(_("Provider '{}': 'install' must be a command line").format(label))
        if "{query}" not in " ".join(shlex.split(search) if isinstance(search, str) else search):
            raise ConfigError(_("Provider '{}': 'search' needs a {{query}} placeholder").format(label))
        colors = definition.get("colors")
        if colors is not None and not isinstance(colors, dict):
            raise ConfigError(_("Provider '{}': 'colors' must be a mapping").format(label))

    def is_available(self):
        return shutil.which(self.binary) is not None

    def source_color(self, source):
        if source in self.colors:
            return self.colors[source]
        return super().source_color(source)

    def search(self, query):
        if not query:
            return SearchResult()

        argv = [part.replace("{query}", query) for part in self.search_argv]
        try:
            res = self.command_runner.run_sync(argv, require_root=self.require_root)
        except RuntimeError as e:
            return SearchResult.failure(str(e))

        stdout = res.stdout or ""
        stderr = res.stderr or ""
        if self.too_many_marker and (self.too_many_marker in stdout or self.too_many_marker in stderr):
            return SearchResult.failure(_(TOO_MANY_RESULTS))

        if res.returncode != 0:
            logger.warning("%s search failed (%s): %s", self.name, res.returncode, stderr.strip())
            first_line = stderr.strip().splitlines()[0] if stderr.strip() else ""
            return SearchResult.failure(first_line or _("Error executing the search command"))

        packages = [pkg for pkg in map(self._to_package, self._parse_records(stdout)) if pkg is not None]
        return SearchResult(packages=SearchProcessor.process(packages, query))

    def _parse_records(self, output):
        output = output.strip()
        if not output:
            return []
        try:
            data = json.loads(output)
        except json.JSONDecodeError:
            # One JSON object per line; broken lines are skipped.
            records = []
            for line in output.splitlines():
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.debug("%s: skipping unparsable line %r", self.name, line)
            return records

        if isinstance(data, dict):
            return data.get("packages") or []
        if isinstance(data, list):
            return data
        return []

    def _to_package(self, record):
        if not isinstance(record, dict) or not record.get("name"):
            return None
        return Package(
            name=str(record["name"]),
            version=str(record.get("version") or ""),
            description=str(record.get("description") or ""),
            source=str(record.get("source") or record.get("repository") or self.default_source),
            installed=bool(record.get("installed", False)),
        )

    def install_command(self, pkg):
        command = self.install_template
        for key, value in (("name", pkg.name), ("source", pkg.source), ("version", pkg.version)):
            command = command.replace("{%s}" % key, shlex.quote(value))
        return command


# -------------------------
# Registry and startup selection
# -------------------------
class ProviderRegistry:
    """
    Known providers in order of preference: the ones configured in the
    settings file first (in file order), then the built-in ones.
    """

    BUILTIN = (("luet", LuetProvider),)

    def __init__(self, settings, command_runner=None):
        if command_runner is None:
            command_runner = CommandRunner(settings.elevation or CommandRunner.get_elevation_cmd())
        self.command_runner = command_runner
        self._providers = {}
        for definition in settings.providers:
            provider = CommandProvider(definition, command_runner)
            if provider.name in self._providers:
                raise ConfigError(_("Provider '{}' is defined twice").format(provider.name))
            self._providers[provider.name] = provider
        for name, provider_class in self.BUILTIN:
            self._providers.setdefault(name, provider_class(command_runner))

    def names(self):
        return list(self._providers)

    def get(self, name):
        return self._providers.get(name)

    def available(self):
        """Names of the providers usable on this system, most preferred first."""
        return [name for name, provider in self._providers.items() if provider.is_available()]

    def select(self, name=None):
        """
        Pick the provider for this session.

        :param name: explicitly requested provider, or None to auto-detect
        :raises ProviderUnavailableError: if nothing usable is found
        """
        if name:
            provider = self.get(name)
            if provider is not None and provider.is_available():
                logger.info("Using requested provider %s", name)
                return provider
            raise ProviderUnavailableError(_("Provider '{}' not available").format(name))

        available = self.available()
        if not available:
            raise ProviderUnavailableError(_("No supported package manager found"))
        logger.info("Auto-detected provider %s (available: %s)", available[0], ", ".join(available))
        return self.get(available[0])


def select_provider(settings, name=None, command_runner=None):
    """Explicit name, then the settings' provider, then auto-detection."""
    registry = ProviderRegistry(settings, command_runner)
    return registry.select(name or settings.provider)

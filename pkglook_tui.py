#!/usr/bin/env python3
"""
pkglook_tui.py — interactive package search on a raw ANSI terminal

Type to search the active provider, browse the results with the arrow and
page keys, press Enter to install the selected package.
"""

import sys
import time
import argparse
import logging

try:
    from pkglook_core import (
        AboutInfo,
        CommandRunner,
        PkgLookError,
        ProviderUnavailableError,
        Settings,
        setup_logging,
        _,
    )
    from pkglook_providers import ProviderRegistry
    from pkglook_session import (
        DebounceScheduler,
        FrameRenderer,
        SessionState,
        STATUS_ERROR,
        STATUS_SUCCESS,
        run_search,
    )
    from pkglook_term import Key, QUIT_KEYS, Terminal, color_enabled
except ImportError as e:
    print("FATAL: Could not import pkglook modules. Error: {}".format(e), file=sys.stderr)
    sys.exit(1)

logger = logging.getLogger(__name__)


# --- Main Application Class ---
class PkgLookTUI:

    def __init__(self, provider, settings=None, terminal=None, command_runner=None, clock=time.monotonic):
        self.settings = settings or Settings()
        self.provider = provider
        self.terminal = terminal or Terminal()
        self.command_runner = command_runner or CommandRunner()
        self.clock = clock

        self.state = SessionState(page_size=self.settings.page_size, now=clock())
        self.debouncer = DebounceScheduler(self.settings.debounce_seconds, clock)
        self.renderer = FrameRenderer(
            provider,
            color=color_enabled(self.settings.color, self.terminal.output),
            description_width=self.settings.description_width,
        )

    def draw(self):
        rows, cols = self.terminal.query_dimensions()
        self.terminal.render(self.renderer.render(self.state, cols))

    def tick(self):
        """One loop iteration: debounce, maybe search, draw, read one key."""
        if self.debouncer.due(self.state):
            run_search(self.state, self.provider)

        self.draw()

        event = self.terminal.read_key()
        if event is not None:
            self.handle_input(event)

    def run(self):
        with self.terminal:
            self.terminal.clear_screen()
            while not self.state.quit:
                self.tick()
            self.terminal.clear_screen()
            self.terminal.flush()

    def handle_input(self, event):
        key = event.key
        state = self.state

        if key in QUIT_KEYS:
            state.quit = True
        elif key == Key.ENTER:
            if state.results:
                self.install_selected()
        elif state.navigate(key):
            pass
        elif key == Key.BACKSPACE:
            state.delete_char(self.clock())
        elif key == Key.ESCAPE:
            state.clear_query()
        elif key == Key.CHAR:
            state.append_char(event.char, self.clock())

    def install_selected(self):
        """
        Suspend the session, run the provider's install command on the
        real terminal, wait for the user, then resume.
        """
        pkg = self.state.selected
        if pkg is None:
            return
        command = self.provider.install_command(pkg)
        term = self.terminal

        term.suspend()
        term.write(_("\nInstalling {} from {}...\n\n").format(pkg.name, pkg.source))
        term.flush()

        returncode = self.command_runner.run_interactive(command)

        term.write("\n" + self.renderer.s("dim") + _("Press Enter to continue...") + self.renderer.s("reset"))
        term.flush()
        try:
            term.wait_for_keypress()
        except KeyboardInterrupt:
            # Cooked mode here, so Ctrl-C is the acknowledgment too.
            logger.debug("Install prompt acknowledged with Ctrl-C")
        term.resume()

        if returncode == 0:
            pkg.installed = True
            self.state.set_status(_("Successfully installed {}").format(pkg.name), STATUS_SUCCESS)
            logger.info("Installed %s from %s", pkg.name, pkg.source)
        else:
            self.state.set_status(_("Installation of {} may have failed").format(pkg.name), STATUS_ERROR)
            logger.warning("Install command %r exited with %s", command, returncode)


# --- Command line ---
def build_parser():
    parser = argparse.ArgumentParser(
        prog=AboutInfo.get_program_name(),
        description=AboutInfo.get_description(),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=AboutInfo.get_controls_text(),
    )
    parser.add_argument("-p", "--provider", metavar="NAME", help=_("Use specific package provider"))
    parser.add_argument("-l", "--list", action="store_true", help=_("List available providers"))
    parser.add_argument("-c", "--config", metavar="PATH", help=_("Read settings from PATH"))
    parser.add_argument("--log-file", metavar="PATH", help=_("Write a debug log to PATH"))
    parser.add_argument("-v", "--version", action="version", version=AboutInfo.get_version_text())
    return parser


def list_providers(registry, out=None):
    out = out or sys.stdout
    print(_("Available package providers:\n"), file=out)
    available = registry.available()
    if not available:
        print(_("  No supported package managers found on this system.\n"), file=out)
        print(_("Known providers (not found):"), file=out)
        for name in registry.names():
            print("  {}".format(name), file=out)
        return
    for name in available:
        print("  {}".format(name), file=out)


def main(argv=None):
    args = build_parser().parse_args(argv)

    try:
        settings = Settings.load(args.config)
        setup_logging(args.log_file or settings.log_file)
        registry = ProviderRegistry(settings)

        if args.list:
            list_providers(registry)
            return 0

        provider = registry.select(args.provider or settings.provider)
    except PkgLookError as e:
        print(_("Error: {}").format(e), file=sys.stderr)
        if isinstance(e, ProviderUnavailableError):
            print(_("Run '{} --list' to see available providers").format(AboutInfo.get_program_name()), file=sys.stderr)
        return 1

    app = PkgLookTUI(provider, settings, command_runner=registry.command_runner)
    try:
        app.run()
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.exception("Session crashed")
        print(_("An error occurred: {}").format(e), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

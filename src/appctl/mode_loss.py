"""Mode-loss choice handlers.

When a batch fails because the believed-active mode went away, the caller is
offered retry, switch mode, or continue view-only; nothing degrades silently.
"""

from __future__ import annotations

import click

from .mode import ModeWatcher
from .types import ModeLossAction, ModeStatus

_CHOICES = {
    "r": ModeLossAction.RETRY,
    "retry": ModeLossAction.RETRY,
    "s": ModeLossAction.SWITCH_MODE,
    "switch": ModeLossAction.SWITCH_MODE,
    "v": ModeLossAction.CONTINUE_VIEW_ONLY,
    "view-only": ModeLossAction.CONTINUE_VIEW_ONLY,
}


class ModeLossHandler:
    """Asks the user how to recover from a lost mode."""

    def __init__(self, watcher: ModeWatcher, interactive: bool = True):
        """
        Initialize mode loss handler.

        Args:
            watcher: Mode watcher applying the chosen recovery
            interactive: If True, prompt on the terminal; if False, continue view-only
        """
        self.watcher = watcher
        self.interactive = interactive

    def choose(self, status: ModeStatus) -> ModeLossAction:
        if self.interactive:
            return self._cli_prompt(status)
        return ModeLossAction.CONTINUE_VIEW_ONLY

    def _cli_prompt(self, status: ModeStatus) -> ModeLossAction:
        click.echo()
        click.echo("=" * 60)
        click.echo(f"{status.mode.display_name.upper()} MODE LOST")
        click.echo("=" * 60)
        click.echo(status.reason)
        click.echo()

        while True:
            response = click.prompt(
                "Retry, switch mode, or continue view-only? [r/s/v]",
                default="v",
                show_default=False,
            ).strip().lower()
            action = _CHOICES.get(response)
            if action is not None:
                return action
            click.echo("Invalid response. Please enter r(etry), s(witch), or v(iew-only).")

    def handle(self, status: ModeStatus) -> ModeStatus:
        """Report the loss, ask for a choice, and apply it."""
        self.watcher.report_loss(status)
        return self.watcher.handle_mode_loss(self.choose(status))


class FixedChoiceHandler(ModeLossHandler):
    """Non-interactive handler that always applies the same choice (scripts/CI)."""

    def __init__(self, watcher: ModeWatcher, action: ModeLossAction):
        super().__init__(watcher, interactive=False)
        self.action = action

    def choose(self, status: ModeStatus) -> ModeLossAction:
        return self.action

"""Display utilities and UI helpers."""

import click


def highlight_branch(name):
    return click.style(name, fg="cyan", bold=True)


def highlight_commit(sha):
    return click.style(sha, fg="yellow")


def highlight_remote(name):
    return click.style(name, fg="magenta")


def highlight_paths(paths):
    return ", ".join(click.style(p, fg="green") for p in paths)


class Reporter:
    """
    Console output gated by --silent / --verbose.

    Informational lines are dropped when silent; step-by-step diagnostics are
    shown only when verbose (and not silent). Errors never pass through here.
    """

    def __init__(self, silent=False, verbose=False):
        self.silent = silent
        self.verbose_enabled = verbose and not silent

    def log(self, message):
        if not self.silent:
            click.echo(message)

    def verbose(self, message):
        if self.verbose_enabled:
            click.secho(message, dim=True)

    def done(self, message):
        if not self.silent:
            click.echo(f"{click.style('✓', fg='green', bold=True)} {message}")

    def warn(self, message):
        if not self.silent:
            click.secho(f"⚠ {message}", fg="yellow", err=True)

    def result(self, value):
        """Machine-readable output; printed even when silent."""
        click.echo(value)


QUIET = Reporter(silent=True)

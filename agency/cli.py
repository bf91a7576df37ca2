"""CLI commands and entry point."""

import functools
import json
import logging

import click

from .config import __version__, config_path_from_env, load_config
from .errors import AgencyError
from .ui import Reporter, highlight_branch, highlight_paths
from .workflow import Workflow


def common_options(func):
    """Add --silent/--verbose and hand the command a ready Workflow."""

    @click.option("-s", "--silent", is_flag=True, help="Suppress informational output")
    @click.option("-v", "--verbose", is_flag=True, help="Show step-by-step diagnostics")
    @click.pass_context
    @functools.wraps(func)
    def wrapper(ctx, silent, verbose, **kwargs):
        if verbose and not silent:
            logging.basicConfig(format="%(name)s: %(message)s")
            logging.getLogger("agency").setLevel(logging.DEBUG)
        reporter = Reporter(silent=silent, verbose=verbose)
        try:
            obj = ctx.obj or {}
            config = obj.get("config") or load_config(config_path_from_env())
            workflow = Workflow.from_cwd(config, reporter)
            return func(workflow, **kwargs)
        except AgencyError as exc:
            click.secho(f"Error: {exc}", fg="red", err=True)
            ctx.exit(1)

    return wrapper


@click.group()
@click.version_option(version=__version__)
def cli():
    """Agency: keep agent instruction files out of your PR branches."""
    pass


@cli.command()
@click.argument("base_branch", required=False)
@click.option(
    "-b", "--branch", help="Custom name for the PR branch (defaults to the config pattern)"
)
@click.option("-f", "--force", is_flag=True, help="Allow creating a PR branch from a PR branch")
@common_options
def pr(workflow, base_branch, branch, force):
    """Create the PR branch with managed files reverted since divergence."""
    workflow.pr(base_branch=base_branch, branch=branch, force=force)


@cli.command(name="switch")
@common_options
def switch_branch(workflow):
    """Toggle between the source branch and its PR branch."""
    workflow.switch()


@cli.command()
@click.argument("base_branch", required=False)
@click.option(
    "-b", "--branch", help="Custom name for the PR branch (defaults to the config pattern)"
)
@click.option("-f", "--force", is_flag=True, help="Force push if the remote branch has diverged")
@common_options
def push(workflow, base_branch, branch, force):
    """Rebuild the PR branch, push it, and return to the source branch."""
    workflow.push(base_branch=base_branch, branch=branch, force=force)


@cli.command()
@common_options
def merge(workflow):
    """Merge the PR branch into its base branch."""
    workflow.merge()


@cli.command()
@common_options
def emitted(workflow):
    """Print the PR branch name for the current branch."""
    workflow.reporter.result(workflow.emitted())


@cli.command()
@common_options
def source(workflow):
    """Print the source branch name for the current branch."""
    workflow.reporter.result(workflow.source())


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print the status as JSON")
@common_options
def status(workflow, as_json):
    """Show the source/PR pair for the current branch."""
    info = workflow.status()
    if as_json:
        workflow.reporter.result(json.dumps(info.to_dict(), indent=2))
        return

    log = workflow.reporter.log
    log(f"Current branch: {highlight_branch(info.current_branch)}")
    if not info.initialized:
        log("Not initialized (no agency.json on this branch)")
        log(f"PR branch: {highlight_branch(info.pr_branch)}")
        return

    if info.branch_type == "emit":
        log("Branch type: PR branch")
        counterpart = f"Source branch: {highlight_branch(info.source_branch)}"
    else:
        log("Branch type: Source branch")
        counterpart = f"PR branch: {highlight_branch(info.pr_branch)}"
    if not info.counterpart_exists:
        counterpart += " (not created yet)"
    log(counterpart)
    if info.template:
        log(f"Template: {info.template}")
    if info.base_branch:
        log(f"Base branch: {highlight_branch(info.base_branch)}")
    if info.files:
        log("Filtered files:")
        for path in info.files:
            log(f"  {highlight_paths([path])}")
    if info.created_at:
        log(f"Created: {info.created_at}")


@cli.command()
@click.option("-r", "--remote", help="Remote to fetch the PR branch from")
@common_options
def pull(workflow, remote):
    """Cherry-pick new commits from the remote PR branch onto the source branch."""
    workflow.pull(remote=remote)

@cli.group()
def base():
    """Get or set the base branch."""
    pass


@base.command(name="set")
@click.argument("base_branch")
@click.option("--repo", is_flag=True, help="Set the repository-level default instead")
@common_options
def base_set(workflow, base_branch, repo):
    """Set the base branch for the current branch."""
    workflow.base_set(base_branch, repo=repo)


@base.command(name="get")
@click.option("--repo", is_flag=True, help="Show the repository-level default instead")
@common_options
def base_get(workflow, repo):
    """Show the configured base branch."""
    workflow.reporter.result(workflow.base_get(repo=repo))


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()

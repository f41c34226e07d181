"""CLI for the ``payee_vetting`` package.

Command handlers (``cmd_*``) return a process exit code and print results to
stdout and problems to stderr; the Typer commands below are thin wrappers.
The root callback loads a local ``.env`` (without overriding the environment)
and configures logging once.
"""

from __future__ import annotations

import sys
from collections import Counter, defaultdict
from collections.abc import Sequence
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .logging_setup import configure_logging

# ---- Command handlers --------------------------------------------------------


def _make_suggestion_source():
    from .llm import OpenAIAdapter

    return OpenAIAdapter()


def cmd_normalize(payees: Sequence[str]) -> int:
    from .normalize import extract_match_value

    for raw in payees:
        print(f"{raw}\t{extract_match_value(raw)}")
    return 0


def cmd_coverage(rules_path: Path, names_path: Path | None, qfx_paths: Sequence[Path]) -> int:
    """Bucket the unique payees of the given exports by rule coverage."""

    from .coverage import classify_by_rule_coverage
    from .engine import MalformedConditionError
    from .external import ExportedRuleSource
    from .qfx import parse_qfx_files

    source = ExportedRuleSource(rules_path, names_path)
    try:
        rules = source.get_rules()
        names = source.get_payee_names()
        txs = parse_qfx_files(qfx_paths)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    payees = list(dict.fromkeys(tx.raw_payee for tx in txs))
    try:
        result = classify_by_rule_coverage(rules, payees, names)
    except MalformedConditionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for label, bucket in (
        ("covered", result.covered),
        ("needs category", result.needs_category),
        ("uncovered", result.uncovered),
    ):
        print(f"{label} ({len(bucket)})")
        for raw in bucket:
            print(f"  {raw}")
    return 0


def cmd_vetted_list(*, session_only: bool = False) -> int:
    from .vetted import StoreFormatError, VettedRuleStore

    try:
        store = VettedRuleStore()
    except StoreFormatError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    rules = store.get_session_rules() if session_only else store.get_all_rules()
    for r in sorted(rules, key=lambda r: (r.stage, r.action_value.casefold(), r.match_value)):
        print(f"{r.stage}\t{r.match_value}\t{r.action_field}={r.action_value}")
    print(f"{len(rules)} rule(s)", file=sys.stderr)
    return 0


def cmd_vetted_reconcile(rules_path: Path, names_path: Path | None) -> int:
    from .external import ExportedRuleSource
    from .vetted import StorePersistenceError, VettedRuleStore

    source = ExportedRuleSource(rules_path, names_path)
    try:
        store = VettedRuleStore()
        removed = store.reconcile_against_external(source.get_rules(), source.get_payee_names())
    except (OSError, ValueError, StorePersistenceError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for key in removed:
        print(key)
    print(f"Removed {len(removed)} rule(s) already present in the backend.", file=sys.stderr)
    return 0


def cmd_consolidate(*, assume_yes: bool = False) -> int:
    """Offer one merged pattern per clean name matched by several patterns."""

    from .consolidation import (
        ConsolidationError,
        SuggestionFormatError,
        apply_consolidation,
        build_consolidation_groups,
        is_valid_consolidation_pattern,
        request_consolidation_suggestions,
    )
    from .term_ui import prompt_match_pattern
    from .vetted import StoreFormatError, VettedRuleStore

    try:
        store = VettedRuleStore()
    except StoreFormatError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    groups = build_consolidation_groups(store)
    if not groups:
        print("Nothing to consolidate.")
        return 0

    try:
        suggestions = request_consolidation_suggestions(groups, _make_suggestion_source())
    except SuggestionFormatError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:  # noqa: BLE001 - surface transport failures as exit code
        print(f"Error: consolidation suggestions failed: {e}", file=sys.stderr)
        return 1

    merged = 0
    for group in groups:
        s = suggestions.get(group.action_value)
        if s is None:
            continue
        print(f"\n{group.action_value}")
        for mv in group.match_values:
            print(f"  - {mv}")
        print(f"  suggested: {s.suggested_match_value}  ({s.reason})")

        if assume_yes:
            if not is_valid_consolidation_pattern(s.suggested_match_value, group.match_values):
                print("  skipped: suggestion does not occur in every pattern")
                continue
            pattern: str | None = s.suggested_match_value
        else:
            pattern = prompt_match_pattern(group.match_values, initial=s.suggested_match_value)
        if not pattern:
            print("  skipped")
            continue

        try:
            apply_consolidation(store, group, pattern)
        except ConsolidationError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        merged += 1
        print(f"  merged into {pattern!r}")

    print(f"\nConsolidated {merged} of {len(groups)} group(s).")
    return 0


def _make_proposal_source():
    from .llm import OpenAIAdapter

    return OpenAIAdapter()


def _describe_suggestion(s) -> str:
    from .models import CategorySuggestion, RenameSuggestion, SplitSuggestion

    match s:
        case SplitSuggestion():
            text = (
                f"split {', '.join(s.raw_payees)} out of {s.clean_payee!r}"
                f" as {s.suggested_name!r}"
            )
        case RenameSuggestion():
            text = f"rename {s.clean_payee!r} to {s.suggested_name!r}"
        case CategorySuggestion():
            text = f"set the category of {s.clean_payee!r} to {s.suggested_category!r}"
        case _:
            text = f"check {s.clean_payee!r}"
    return f"{text} ({s.reason})" if s.reason else text


def cmd_vet(
    rules_path: Path,
    names_path: Path | None,
    categories_path: Path | None,
    qfx_paths: Sequence[Path],
    *,
    review: bool = True,
    dry_run: bool = False,
    assume_yes: bool = False,
) -> int:
    """Propose a clean name and category per raw payee and save the decisions.

    Payees the store or the backend's rules already resolve are not sent to
    the model. With ``review`` the model looks over names shared by several
    raw payees and each suggestion is confirmed before it is applied.
    """

    from .engine import first_action_value
    from .external import ExportedRuleSource, flat_category_names, load_category_groups_file
    from .models import FlagSuggestion
    from .payee_rows import (
        aggregate_groups_for_review,
        apply_suggestion,
        build_payee_rows,
        save_decisions,
    )
    from .proposals import propose_categories, propose_clean_names
    from .qfx import parse_qfx_files
    from .term_ui import prompt_confirm
    from .vetted import StoreFormatError, StorePersistenceError, VettedRuleStore

    source = ExportedRuleSource(rules_path, names_path)
    try:
        rules = source.get_rules()
        names = source.get_payee_names()
        categories = (
            flat_category_names(load_category_groups_file(categories_path))
            if categories_path is not None
            else []
        )
        txs = parse_qfx_files(qfx_paths)
        store = VettedRuleStore()
    except (OSError, ValueError, StoreFormatError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    tx_counts = Counter(tx.raw_payee for tx in txs)
    first_tx = {}
    for tx in txs:
        first_tx.setdefault(tx.raw_payee, tx)
    raw_payees = list(first_tx)
    known_payees = list(
        dict.fromkeys(
            [
                names.get(target, target)
                for r in rules
                if r.stage == "pre" and (target := first_action_value(r, "payee"))
            ]
            + [r.action_value for r in store.get_all_rules() if r.stage == "pre"]
        )
    )

    llm = _make_proposal_source()
    try:
        proposals = propose_clean_names(
            raw_payees,
            rules,
            store,
            llm,
            known_payees=known_payees,
            payee_names=names,
            transactions=first_tx,
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    if proposals.failures:
        print(
            f"Warning: {len(proposals.failures)} name proposal(s) failed; "
            "using the match pattern instead.",
            file=sys.stderr,
        )

    rows = build_payee_rows(raw_payees, proposals.metas, tx_counts, store)
    rows, category_failures = propose_categories(rows, llm, categories)
    if category_failures:
        print(
            f"Warning: {len(category_failures)} category proposal(s) failed.", file=sys.stderr
        )

    if review:
        try:
            suggestions = llm.review_groupings(aggregate_groups_for_review(rows))
        except Exception as e:  # noqa: BLE001 - review is optional
            print(f"Warning: review failed: {e}", file=sys.stderr)
            suggestions = []
        for s in suggestions:
            print(f"review: {_describe_suggestion(s)}")
            if isinstance(s, FlagSuggestion):
                continue
            try:
                accepted = assume_yes or prompt_confirm("  Apply?", default=True)
            except (KeyboardInterrupt, EOFError):
                print("  review stopped")
                break
            if not accepted:
                continue
            outcome = apply_suggestion(s, rows, tx_counts)
            rows = outcome.rows
            print("  applied" if outcome.applied else "  nothing to apply")

    for row in rows:
        if row.raw_payees:
            print(f"{row.match_value}\t{row.clean_payee}\t{row.category or '-'}\t{row.tx_count}")

    if dry_run:
        print("Dry run: no decisions saved.")
        return 0

    try:
        payee_map = save_decisions(rows, store, known_payees)
    except StorePersistenceError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"Saved decisions for {len(payee_map)} of {len(raw_payees)} raw payee(s).")
    return 0


def cmd_transfers(qfx_paths: Sequence[Path], names_path: Path | None) -> int:
    from .external import load_names_file
    from .qfx import parse_qfx_files
    from .transfers import find_transfer_pairs, format_amount, group_pairs_by_accounts, to_cents

    try:
        txs = parse_qfx_files(qfx_paths)
        names = load_names_file(names_path) if names_path is not None else {}
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    by_account: dict[str, list] = defaultdict(list)
    for tx in txs:
        by_account[tx.account].append(tx)

    pairs = find_transfer_pairs(by_account, names)
    if not pairs:
        print("No transfer candidates found.")
        return 0

    for group in group_pairs_by_accounts(pairs).values():
        first = group[0]
        print(f"{first.out_account_name} -> {first.in_account_name} ({len(group)})")
        for p in group:
            print(
                f"  {p.out_tx.date.isoformat()}  {format_amount(to_cents(p.out_tx.amount)):>12}"
                f"  {p.out_tx.raw_payee}  |  {p.in_tx.raw_payee}"
            )
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Vet bank payee rules: normalize raw payees, check rule coverage, vet payees, "
        "manage the local vetted rule store and find transfers. "
        "Loads OPENAI_API_KEY from a local .env."
    ),
)
vetted_app = typer.Typer(no_args_is_help=True, add_completion=False, help="Vetted rule store.")
app.add_typer(vetted_app, name="vetted")


# Module-level option objects to satisfy ruff B008 (no calls in parameter defaults).
RULES_OPTION: OptionInfo = typer.Option(
    ...,
    "--rules",
    help="JSON export of the backend's rules (ordered).",
    dir_okay=False,
    exists=False,  # the handler reports missing files
)
NAMES_OPTION: OptionInfo = typer.Option(
    "--names",
    help="JSON id->name map (payees, categories, accounts).",
    dir_okay=False,
)
QFX_OPTION: OptionInfo = typer.Option(
    ...,
    "--qfx",
    help="QFX/OFX export; repeat for several accounts.",
    dir_okay=False,
)
CATEGORIES_OPTION: OptionInfo = typer.Option(
    "--categories",
    help="JSON export of category groups; limits proposed categories.",
    dir_okay=False,
)


@app.command("normalize")
def normalize_cmd(payees: Annotated[list[str], typer.Argument(help="Raw payee strings.")]) -> None:
    """Print the stable match pattern for each raw payee."""

    raise typer.Exit(cmd_normalize(payees))


@app.command("coverage")
def coverage_cmd(
    rules: Annotated[Path, RULES_OPTION],
    qfx: Annotated[list[Path], QFX_OPTION],
    names: Annotated[Path | None, NAMES_OPTION] = None,
) -> None:
    """Show which payees the backend's rules already cover."""

    raise typer.Exit(cmd_coverage(rules, names, qfx))


@vetted_app.command("list")
def vetted_list_cmd(
    session: bool = typer.Option(False, "--session", help="Only rules approved in this run."),
) -> None:
    raise typer.Exit(cmd_vetted_list(session_only=session))


@vetted_app.command("reconcile")
def vetted_reconcile_cmd(
    rules: Annotated[Path, RULES_OPTION],
    names: Annotated[Path | None, NAMES_OPTION] = None,
) -> None:
    """Drop local rules the backend already encodes."""

    raise typer.Exit(cmd_vetted_reconcile(rules, names))


@app.command("consolidate")
def consolidate_cmd(
    yes: bool = typer.Option(False, "--yes", help="Accept valid suggestions without prompting."),
) -> None:
    """Merge clean names matched by several patterns into one pattern each."""

    raise typer.Exit(cmd_consolidate(assume_yes=yes))


@app.command("vet")
def vet_cmd(
    rules: Annotated[Path, RULES_OPTION],
    qfx: Annotated[list[Path], QFX_OPTION],
    names: Annotated[Path | None, NAMES_OPTION] = None,
    categories: Annotated[Path | None, CATEGORIES_OPTION] = None,
    review: bool = typer.Option(
        True, "--review/--no-review", help="Ask the model to review shared names."
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the decisions without saving."),
    yes: bool = typer.Option(False, "--yes", help="Apply review suggestions without prompting."),
) -> None:
    """Vet the raw payees of the given exports and save the decisions."""

    raise typer.Exit(
        cmd_vet(rules, names, categories, qfx, review=review, dry_run=dry_run, assume_yes=yes)
    )


@app.command("transfers")
def transfers_cmd(
    qfx: Annotated[list[Path], QFX_OPTION],
    names: Annotated[Path | None, NAMES_OPTION] = None,
) -> None:
    """List candidate transfers between the given accounts."""

    raise typer.Exit(cmd_transfers(qfx, names))


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    app()

"""CLI helper that prints the current standings of a regatta."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from regatta_core import RegattaService
from regatta_core.standings import IncompleteRaceForStandings, RaceScore, StandingsTable


def _format_score(score: Optional[RaceScore]) -> str:
    if score is None:
        return "-"
    text = f"{score.points} {score.penalty.value}" if score.penalty else str(score.points)
    return f"({text})" if score.discarded else text


def format_table(table: StandingsTable) -> str:
    race_columns = [f"R{race.number}{'*' if race.incomplete else ''}" for race in table.races]
    header = ["Rank", "Sail", "Helm"] + race_columns + ["Total"]
    lines: List[List[str]] = [header]
    for row in table.rows:
        lines.append(
            [str(row.rank), row.boat.sail_number, row.boat.helm or ""]
            + [_format_score(row.score_for(race.id)) for race in table.races]
            + [str(row.total)]
        )
    widths = [max(len(line[index]) for line in lines) for index in range(len(header))]
    rendered = ["  ".join(cell.ljust(width) for cell, width in zip(line, widths)).rstrip() for line in lines]
    footer = f"Discards: {table.discard_count}"
    if any(race.incomplete for race in table.races):
        footer += "  (* race completed with missing boats scored DNS)"
    return "\n".join(rendered + ["", footer])


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Print the standings of a regatta")
    parser.add_argument("regatta_id")
    parser.add_argument("--strict", action="store_true", help="fail when a completed race lacks results")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    service = RegattaService()
    try:
        table = service.compute_standings(args.regatta_id, strict=args.strict)
    except IncompleteRaceForStandings as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2
    except (ValueError, RuntimeError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    if table is None:
        print("Standings need at least two completed races.")
        return 0

    print(format_table(table))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

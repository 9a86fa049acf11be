from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .ancestor_graph import build_litter_graph, generation_summary
from .chart_session import ChartSession
from .coi_xlsx import DEFAULT_SHEET, append_coi_row
from .dog_store import DEFAULT_STORE_PATH, JsonDogStore
from .errors import PedigreeError
from .graph_store import default_graph_path, save_graph_snapshot
from .inbreeding import common_ancestors, compute_mating_coefficient
from .models import ChartOptions, COIResult
from .pedigree_ascii import render_pedigree_ascii, render_pedigree_text
from .registry_api import RegistryClient, api_url_from_env, build_client


# ---------------------------------------------------------------------------

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Build a dog's ancestor graph and report its coefficient of inbreeding.",
    )

    parser.add_argument("--dog-id", required=False, help="Registry ID of the dog to chart.")
    parser.add_argument(
        "--generations",
        type=int,
        default=ChartOptions().generations,
        help="Generations to fetch and display (default: 3).",
    )

    # Collaborator selection
    parser.add_argument(
        "--store",
        metavar="PATH",
        default=None,
        help=f"Use a local JSON dog registry instead of the GraphQL API (e.g. {DEFAULT_STORE_PATH}).",
    )
    parser.add_argument(
        "--registry-url",
        default=None,
        help="GraphQL endpoint (default: $KENNEL_API_URL or http://localhost:5005/graphql).",
    )
    parser.add_argument("--token", default=None, help="Bearer token (default: $KENNEL_AUTH_TOKEN).")

    # Output
    parser.add_argument("--json", action="store_true")
    parser.add_argument("--ascii", action="store_true", help="Print a sideways ASCII chart.")
    parser.add_argument("--text", action="store_true", help="Print the chart generation by generation.")
    parser.add_argument("--show-owners", action="store_true")
    parser.add_argument("--hide-dates", action="store_true")
    parser.add_argument(
        "--save-graph",
        nargs="?",
        const="",
        default=None,
        metavar="PATH",
        help="Save the ancestor graph snapshot as JSON (default path under .cache/graphs/).",
    )

    # Trial mating
    parser.add_argument(
        "--mating",
        nargs=2,
        metavar=("SIRE_ID", "DAM_ID"),
        default=None,
        help="Compute the COI of a trial mating instead of an existing dog.",
    )

    # Append COI to XLSX table
    parser.add_argument(
        "--append-coi",
        action="store_true",
        help="Upsert one row for the charted dog into an Excel COI table.",
    )
    parser.add_argument(
        "--coi-xlsx",
        type=str,
        default="coi.xlsx",
        help="Path to COI Excel file (default: coi.xlsx).",
    )
    parser.add_argument(
        "--coi-sheet",
        type=str,
        default=DEFAULT_SHEET,
        help=f"Worksheet name in the COI Excel file (default: {DEFAULT_SHEET}).",
    )

    args = parser.parse_args(argv)
    if args.dog_id is None and args.mating is None:
        parser.error("--dog-id or --mating is required")
    if args.generations < 0:
        parser.error("--generations must be >= 0")
    return args


def _build_lookup(args: argparse.Namespace) -> Any:
    if args.store:
        return JsonDogStore(Path(args.store))
    return RegistryClient(session=build_client(args.token), url=args.registry_url or api_url_from_env())


def _coi_json(result: COIResult) -> Dict[str, Any]:
    return {
        "status": result.status.value,
        "value": result.value,
        "percent": result.percent,
        "risk_level": result.risk_level,
        "truncated": result.truncated,
        "explanation": result.explanation,
        "approximated_ancestors": list(result.approximated_ancestors),
    }


def _print_coi(result: COIResult, ancestors: list, _log: Any) -> None:
    _log("\n[main] Coefficient of inbreeding")
    _log("-" * 60)
    _log(f"COI: {result.display()}  risk={result.risk_level}")
    _log(f"  {result.explanation}")
    for a in ancestors[:10]:
        _log(
            f"  {a.node.label()}: contribution={a.coi_contribution * 100:.3f}% "
            f"occurrences={a.occurrences} F={a.ancestor_coi:.4f}"
        )
        for p in a.pathways:
            _log(f"      {' > '.join(p)}")


# ---------------------------------------------------------------------------

def run_mating(args: argparse.Namespace, lookup: Any, _log: Any) -> Dict[str, Any]:
    sire_id, dam_id = args.mating
    _log(f"[main] Trial mating: sire={sire_id!r} dam={dam_id!r} generations={args.generations}")

    # The litter is generation 0; both partners sit at generation 1
    graph = build_litter_graph(sire_id, dam_id, max(args.generations, 1), lookup)
    for w in graph.warnings:
        _log(f"[main] WARNING: {w.message}")

    result = compute_mating_coefficient(sire_id, dam_id, graph, max_generations=args.generations)
    ancestors = common_ancestors(result, graph)
    _print_coi(result, ancestors, _log)

    return {
        "mating": {"sire_id": sire_id, "dam_id": dam_id},
        "coi": _coi_json(result),
        "common_ancestors": [
            {"id": a.node.id, "name": a.node.name, "contribution": a.coi_contribution, "pathways": a.pathways}
            for a in ancestors
        ],
    }


def run_chart(args: argparse.Namespace, lookup: Any, _log: Any) -> Dict[str, Any]:
    options = ChartOptions(
        generations=args.generations,
        show_owners=args.show_owners,
        show_dates=not args.hide_dates,
    )
    session = ChartSession(lookup, persistence=lookup if args.store else None, options=options)

    _log(f"[main] Loading pedigree for {args.dog_id!r} ({args.generations} generations)")
    graph = session.load(args.dog_id)
    if graph is None:
        raise PedigreeError(f"Chart for {args.dog_id!r} was superseded before it finished loading")

    snap = session.snapshot()
    root = snap.graph.root

    summary, gen_counts = generation_summary(snap.graph)
    _log(f"[main] Resolved: {root.label()} nodes={summary['total_nodes']} truncated={summary['truncated_nodes']}")
    for g, c in gen_counts.items():
        _log(f"  Generation {g}: {c} unique dogs")
    for w in snap.graph.warnings:
        _log(f"[main] WARNING: {w.message}")

    ancestors = common_ancestors(snap.coi, snap.graph)
    _print_coi(snap.coi, ancestors, _log)

    if args.ascii:
        _log("\n[main] ASCII pedigree\n")
        _log(render_pedigree_ascii(snap.horizontal))

    if args.text:
        _log("\n[main] Pedigree\n")
        _log(render_pedigree_text(snap.horizontal, snap.options))

    if args.save_graph is not None:
        path = Path(args.save_graph) if args.save_graph else default_graph_path(snap.root_id)
        save_graph_snapshot(snap.graph, path)

    if args.append_coi:
        append_coi_row(
            xlsx_path=Path(args.coi_xlsx),
            sheet_name=args.coi_sheet,
            dog_id=root.id,
            dog_name=root.name,
            registration_number=root.registration_number,
            result=snap.coi,
            generations=snap.generations,
            common_ancestor_names=[a.node.label() for a in ancestors],
        )
        _log(f"[main] COI row upserted -> {args.coi_xlsx} [{args.coi_sheet}]")

    return {
        "root_dog": root.to_record(),
        "generations": snap.generations,
        "coi": _coi_json(snap.coi),
        "common_ancestors": [
            {"id": a.node.id, "name": a.node.name, "contribution": a.coi_contribution, "pathways": a.pathways}
            for a in ancestors
        ],
        "dogs": [n.to_record() for n in snap.graph],
        "summary": {**summary, "generations": {str(g): c for g, c in gen_counts.items()}},
        "warnings": [{"kind": w.kind, "dog_id": w.dog_id, "message": w.message} for w in snap.graph.warnings],
    }


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    # Keep stdout JSON-clean for --json pipelines
    real_stdout = sys.stdout
    if args.json:
        sys.stdout = sys.stderr

    def _log(*a: Any) -> None:
        print(*a, file=sys.stderr if args.json else sys.stdout)

    try:
        try:
            lookup = _build_lookup(args)
            if args.mating is not None:
                result = run_mating(args, lookup, _log)
            else:
                result = run_chart(args, lookup, _log)
        except PedigreeError as e:
            _log("[main] ERROR:", e)
            return 1

        if args.json:
            sys.stdout = real_stdout
            print(json.dumps(result, ensure_ascii=False, indent=2, default=str))
            sys.stdout = sys.stderr

        _log("\n[main] Pipeline completed.")
        return 0

    finally:
        sys.stdout = real_stdout


if __name__ == "__main__":
    sys.exit(main())

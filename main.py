#!/usr/bin/env python3
"""
Rural Audit — Entry Point
=========================

Loads the audit (remote store when configured, local-only otherwise) and
prints a colourised due-diligence report.

Usage:
    python main.py                              # Report only
    python main.py --analyze                    # Report + AI risk verdict
    SUPABASE_URL=... SUPABASE_KEY=... python main.py
"""

from __future__ import annotations

import asyncio
import logging
import sys

from dotenv import load_dotenv

from rural_audit.config import Settings, load_settings
from rural_audit.models import AnalysisResult, ChecklistItem, NotificationKind, Status
from rural_audit.store import AuditStore
from rural_audit.summary import dashboard, group_by_category

load_dotenv()


# ─── ANSI Color Constants ───────────────────────────────────────────

_RED = "\033[91m"
_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"
_BOLD = "\033[1m"
_RESET = "\033[0m"
_WIDTH = 72

_STATUS_COLORS = {
    Status.PENDING: _YELLOW,
    Status.WAITING: _CYAN,
    Status.OK: _GREEN,
    Status.ISSUE: _RED,
    Status.EXPIRED: _RED,
    Status.WAIVED: _DIM,
}

_KIND_COLORS = {
    NotificationKind.ALERT: _RED,
    NotificationKind.WARNING: _YELLOW,
    NotificationKind.INFO: _CYAN,
}


# ─── Pretty Printer Helpers ─────────────────────────────────────────


def _print_checklist(items: list[ChecklistItem]) -> None:
    """Print items grouped by category, in insertion order."""
    for group in group_by_category(items):
        flag = f"  {_RED}{group.attention} atenção{_RESET}" if group.attention else ""
        print(f"  {_BOLD}{group.category.upper()}{_RESET} {_DIM}({group.progress}% resolvido){_RESET}{flag}")
        for item in group.items:
            color = _STATUS_COLORS[item.status]
            print(f"    {color}[{item.status.value:>7}]{_RESET} {item.name}")
            if item.notes:
                print(f"              {_DIM}{item.notes}{_RESET}")
    print()


def _print_analysis(result: AnalysisResult) -> None:
    color = {"Baixo": _GREEN, "Médio": _YELLOW, "Alto": _RED}[result.risk_level.value]
    print(f"{'─' * _WIDTH}")
    print(f"  {_BOLD}RISCO: {color}{result.risk_level.value}{_RESET}")
    print(f"  {result.summary}")
    for rec in result.recommendations:
        print(f"    - {rec}")


# ─── Pretty Printer ─────────────────────────────────────────────────


def print_report(store: AuditStore, analysis: AnalysisResult | None = None) -> int:
    """Pretty-print the audit with ANSI color codes.

    Returns:
        0 if no item needs attention, 1 otherwise.
    """
    state = store.state
    summary = dashboard(state)

    print(f"\n{'=' * _WIDTH}")
    print(f"{_BOLD}{_CYAN}  DUE DILIGENCE RURAL{_RESET}")
    print(f"{'=' * _WIDTH}")
    print(f"  Modo:        {'remoto' if store.remote_enabled else 'local'}")
    print(f"  Itens:       {summary.total_items}")
    print(f"  Pendentes:   {summary.pending}")
    print(f"  Atenção:     {summary.issues}")
    print(f"  Progresso:   {summary.progress}%")
    print(f"{'─' * _WIDTH}")

    for prop in state.properties:
        print(f"  {_BOLD}IMÓVEL: {prop.name}{_RESET} {_DIM}(Matrícula {prop.matricula or '-'}, {prop.municipio or '-'}){_RESET}")
        _print_checklist(prop.items)

    for party in state.parties:
        print(f"  {_BOLD}PARTE: {party.name}{_RESET} {_DIM}({party.role.value} - {party.type.value}){_RESET}")
        _print_checklist(party.items)

    if state.general_notes:
        print(f"  Observações: {state.general_notes}")

    if analysis is not None:
        _print_analysis(analysis)

    if len(store.notifications):
        print(f"{'─' * _WIDTH}")
        for note in store.notifications.entries:
            print(f"  {_KIND_COLORS[note.kind]}•{_RESET} {note.message}")

    print(f"{'=' * _WIDTH}\n")
    return 1 if summary.issues else 0


# ─── Main ────────────────────────────────────────────────────────────


async def _run(settings: Settings, analyze: bool) -> int:
    store = AuditStore.from_settings(settings)
    try:
        await store.load()
        analysis = await store.run_analysis() if analyze else None
        return print_report(store, analysis)
    finally:
        await store.aclose()


def main():
    """Load the audit and print the report."""
    settings = load_settings()
    logging.basicConfig(level=settings.log_level, format="%(levelname)s %(name)s: %(message)s")
    exit_code = asyncio.run(_run(settings, "--analyze" in sys.argv[1:]))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()

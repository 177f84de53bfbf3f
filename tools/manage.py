#!/usr/bin/env python3
"""
Chain Witness Management CLI

Commands for managing a witness domain:
- init-db: Apply the PostgreSQL schema
- generate-manifest: Start a witnessing round
- anchor: Record the transaction that published a witness event
- audit: Re-check stored verification chains
- export-page: Export a page with its verification chain to JSON
- import-page: Merge a page export from another domain

The witness store is selected the same way the server selects it
(DATABASE_URL / WITNESSSTORE_DRIVER). With the in-memory store every
command starts from an empty domain.

Usage:
    python -m tools.manage <command> [options]

Examples:
    python -m tools.manage init-db
    python -m tools.manage generate-manifest
    python -m tools.manage anchor 3 --tx 0xabc... --sender 0xdef...
    python -m tools.manage export-page "Main Page" -o main_page.json
"""

import argparse
import json
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))


def cmd_init_db(args):
    """Apply the schema DDL to the configured PostgreSQL database."""
    from chainwitness.db import PostgresWitnessStore, create_store, load_schema

    store = create_store()
    if not isinstance(store, PostgresWitnessStore):
        print("Error: no PostgreSQL database configured (set DATABASE_URL)")
        return 1

    store.init_schema(load_schema())
    store.close()
    print("[OK] Schema applied")


def cmd_generate_manifest(args):
    """Build the domain manifest and its Merkle tree."""
    from chainwitness.core import create_engine

    engine = create_engine()
    result = engine.generate_manifest()
    engine.store.close()

    if result is None:
        print("Nothing to witness: no pages with verified revisions.")
        return 0

    print("\n[OK] Domain manifest generated")
    print(f"  Witness event: {result.witness_event_id}")
    print(f"  Manifest page: {result.witness_event.manifest_title}")
    print(f"  Members: {len(result.members)}")
    print(f"  Merkle root: {result.witness_event.merkle_root[:16]}...")
    print("\n  Publish on chain:")
    print(f"  domain_manifest_genesis_hash={result.witness_event.domain_manifest_genesis_hash}")
    print(f"  merkle_root={result.witness_event.merkle_root}")


def cmd_anchor(args):
    """Record the publishing transaction of a witness event."""
    from chainwitness.core import WitnessError, create_engine

    engine = create_engine()
    try:
        result = engine.anchor(
            args.witness_event_id,
            args.network,
            args.contract,
            args.tx,
            args.sender,
        )
    except WitnessError as e:
        print(f"Error: {e}")
        return 1
    finally:
        engine.store.close()

    if result.skipped:
        print(f"Witness event {args.witness_event_id} already anchored, nothing changed.")
        return 0

    print(f"\n[OK] Witness event {args.witness_event_id} anchored")
    print(f"  Manifest page: {result.witness_event.manifest_title}")
    print(f"  Attached revisions: {len(result.attached_hashes)}")
    print(f"  Witness hash: {result.witness_event.witness_hash[:16]}...")


def cmd_audit(args):
    """Recompute stored verification hashes."""
    from chainwitness.core import NotFoundError, create_engine

    engine = create_engine()
    try:
        if args.title:
            titles = args.title
        else:
            with engine.store.transaction() as session:
                titles = [r.document_title for r in session.latest_records_per_title(())]

        failed = 0
        for title in titles:
            try:
                report = engine.audit_title(title)
            except NotFoundError:
                print(f"  [SKIP] {title}: no verification records")
                continue
            if report.valid:
                print(f"  [OK]   {title}: {report.record_count} records")
            else:
                failed += 1
                print(f"  [FAIL] {title}: {json.dumps(report.to_dict())}")
    finally:
        engine.store.close()

    print(f"\nAudited {len(titles)} pages, {failed} failed")
    return 1 if failed else 0


def cmd_export_page(args):
    """Export a page and its verification chain to a JSON file."""
    from chainwitness.core import NotFoundError, create_engine

    engine = create_engine()
    try:
        export = engine.export_page(args.title)
    except NotFoundError as e:
        print(f"Error: {e}")
        return 1
    finally:
        engine.store.close()

    output_file = args.output or "page_export.json"
    with open(output_file, "w", encoding="utf-8") as f:
        f.write(export.model_dump_json(indent=2))

    print(f"[OK] Exported {len(export.revisions)} revisions of {args.title!r} to {output_file}")


def cmd_import_page(args):
    """Merge a page export into this domain."""
    from chainwitness.core import WitnessError, create_engine

    with open(args.file, "r", encoding="utf-8") as f:
        data = json.load(f)

    engine = create_engine()
    try:
        summary = engine.import_page(data)
    except WitnessError as e:
        print(f"Error: {e}")
        return 1
    finally:
        engine.store.close()

    print(f"[OK] Imported {summary['revisions']} revisions of {summary['title']!r}")
    if summary["renamed_local_to"]:
        print(f"  Local page moved to: {summary['renamed_local_to']}")
    print(f"  Verification blocks merged: {summary['patched']}")


def main():
    parser = argparse.ArgumentParser(
        description="Chain Witness Management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("init-db", help="Apply the PostgreSQL schema")

    subparsers.add_parser("generate-manifest", help="Start a witnessing round")

    p_anchor = subparsers.add_parser(
        "anchor",
        help="Record the transaction that published a witness event"
    )
    p_anchor.add_argument("witness_event_id", type=int)
    p_anchor.add_argument("--tx", required=True, help="Transaction hash")
    p_anchor.add_argument("--sender", required=True, help="Sender account address")
    p_anchor.add_argument("--network", help="Network (default: the event's network)")
    p_anchor.add_argument("--contract", help="Contract address (default: the event's contract)")

    p_audit = subparsers.add_parser("audit", help="Re-check stored verification chains")
    p_audit.add_argument("title", nargs="*", help="Pages to audit (default: all)")

    p_export = subparsers.add_parser("export-page", help="Export a page to JSON")
    p_export.add_argument("title")
    p_export.add_argument("--output", "-o", help="Output file (default: page_export.json)")

    p_import = subparsers.add_parser("import-page", help="Import a page export")
    p_import.add_argument("file", help="Page export JSON file")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "init-db": cmd_init_db,
        "generate-manifest": cmd_generate_manifest,
        "anchor": cmd_anchor,
        "audit": cmd_audit,
        "export-page": cmd_export_page,
        "import-page": cmd_import_page,
    }

    return commands[args.command](args) or 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Chain Witness Page Export Verifier

A standalone tool to verify page exports independently.
No server connection required - verification is cryptographic.

Usage:
    python verify.py page.json
    python verify.py page.json --verbose
    python verify.py page.json --json

Exit codes:
    0 - VERIFIED: All checks passed
    1 - TAMPERED: Hash, chain or proof mismatch
    2 - INCOMPLETE: No verified revisions in the export
    3 - INVALID_FORMAT: Export structure invalid
"""

import argparse
import hashlib
import json
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional


# ============================================================
# Result Types
# ============================================================

class VerificationResult(Enum):
    VERIFIED = "VERIFIED"
    TAMPERED = "TAMPERED"
    INCOMPLETE = "INCOMPLETE"
    INVALID_FORMAT = "INVALID_FORMAT"


@dataclass
class VerificationReport:
    result: VerificationResult
    title: str
    revision_count: int
    checks_passed: list[str]
    checks_failed: list[str]
    warnings: list[str]
    details: dict[str, Any]


# ============================================================
# Hash Computation
# ============================================================

MAIN_SLOT = "main"


def digest(data: str) -> str:
    """
    SHA3-512 hex digest.

    MUST match chainwitness/core/hasher.py exactly:
    empty input stays empty, fields concatenate without separators.
    """
    if data == "":
        return ""
    return hashlib.sha3_512(data.encode("utf-8")).hexdigest()


def concat(*parts: Optional[str]) -> str:
    return "".join(p if p is not None else "" for p in parts)


def content_hash(slots: dict[str, str]) -> str:
    roles = sorted(r for r in slots if r != MAIN_SLOT)
    if MAIN_SLOT in slots:
        roles.insert(0, MAIN_SLOT)
    return digest("".join(slots[r] for r in roles))


def walk_proof(leaf: str, steps: list[dict], root: str) -> bool:
    """Fold a structured Merkle proof from leaf to root."""
    if not steps:
        return leaf == root
    current = leaf
    for step in steps:
        left = step.get("left", step.get("left_leaf"))
        right = step.get("right", step.get("right_leaf"))
        if current not in (left, right):
            return False
        current = left if right is None else digest(concat(left, right))
        if current != step.get("successor"):
            return False
    return current == root


# ============================================================
# Export Verifier
# ============================================================

class ExportVerifier:
    """
    Verifies a page export.

    Checks every verification block against the revision content, the
    previous block and, where present, its witness data and proof.
    """

    def __init__(self, export: dict, verbose: bool = False):
        self.export = export
        self.verbose = verbose
        self.checks_passed = []
        self.checks_failed = []
        self.warnings = []
        self.details = {}

    def log(self, msg: str):
        if self.verbose:
            print(f"  {msg}")

    def verify(self) -> VerificationReport:
        """Run all verification checks."""
        if not self._check_structure():
            return self._report(VerificationResult.INVALID_FORMAT)

        verified = [
            r for r in self.export["revisions"]
            if isinstance(r, dict) and r.get("verification")
        ]
        self.details["verified_revisions"] = len(verified)
        if not verified:
            self.checks_failed.append("Export has no verified revisions")
            return self._report(VerificationResult.INCOMPLETE)

        if not self._verify_hashes(verified):
            return self._report(VerificationResult.TAMPERED)

        if not self._verify_chain_linkage(verified):
            return self._report(VerificationResult.TAMPERED)

        if not self._verify_witnesses(verified):
            return self._report(VerificationResult.TAMPERED)

        declared = self.export.get("chain_height")
        if declared != len(verified):
            self.warnings.append(
                f"chain_height {declared} differs from {len(verified)} verified revisions"
            )

        return self._report(VerificationResult.VERIFIED)

    def _check_structure(self) -> bool:
        self.log("Checking export structure...")

        missing = [k for k in ("title", "chain_height", "revisions") if k not in self.export]
        if missing:
            self.checks_failed.append(f"Missing required keys: {missing}")
            return False

        if not isinstance(self.export["revisions"], list):
            self.checks_failed.append("'revisions' must be an array")
            return False

        for i, revision in enumerate(self.export["revisions"]):
            if not isinstance(revision, dict) or not isinstance(revision.get("slots"), dict):
                self.checks_failed.append(f"Revision {i}: missing slots")
                return False
            block = revision.get("verification")
            if block is not None and not block.get("verification_hash"):
                self.checks_failed.append(f"Revision {i}: verification block has no hash")
                return False

        self.checks_passed.append("Export structure valid")
        return True

    def _verify_hashes(self, revisions: list[dict]) -> bool:
        """Recompute content, metadata and verification hashes."""
        self.log("Verifying revision hashes...")

        all_valid = True
        previous = None
        for revision in revisions:
            block = revision["verification"]
            label = f"Revision {revision.get('revision_id', '?')}"

            computed_content = content_hash(revision["slots"])
            if block.get("content_hash") != computed_content:
                self.checks_failed.append(f"{label}: content hash mismatch")
                all_valid = False

            timestamp = block.get("timestamp") or revision.get("timestamp")
            computed_metadata = digest(concat(
                block.get("domain_id"),
                timestamp,
                previous["verification_hash"] if previous else None,
            ))
            if block.get("metadata_hash") != computed_metadata:
                self.checks_failed.append(f"{label}: metadata hash mismatch")
                all_valid = False

            if previous and previous.get("signature"):
                expected_sig = digest(concat(previous["signature"], previous.get("public_key")))
                # A revision signed after its successor existed is not committed
                if block.get("signature_hash") != expected_sig:
                    self.warnings.append(
                        f"{label}: signature hash does not commit the previous signature"
                    )

            computed = digest(concat(
                block.get("content_hash"),
                block.get("metadata_hash"),
                block.get("signature_hash"),
                block.get("witness_hash"),
            ))
            if computed != block["verification_hash"]:
                self.checks_failed.append(
                    f"{label}: verification hash mismatch "
                    f"(computed={computed[:16]}..., stored={block['verification_hash'][:16]}...)"
                )
                all_valid = False
            else:
                self.log(f"  {label}: hash verified [OK]")

            previous = block

        if all_valid:
            self.checks_passed.append(f"All {len(revisions)} verification hashes verified")
        return all_valid

    def _verify_chain_linkage(self, revisions: list[dict]) -> bool:
        self.log("Verifying chain linkage...")

        blocks = [r["verification"] for r in revisions]
        genesis = blocks[0].get("genesis_hash")
        if genesis and genesis != blocks[0]["verification_hash"]:
            self.warnings.append("First exported revision is not the chain genesis")

        for i, block in enumerate(blocks):
            if genesis and block.get("genesis_hash") not in (None, genesis):
                self.checks_failed.append(f"Chain break at revision {i}: genesis hash differs")
                return False

        self.details["genesis_hash"] = genesis
        self.checks_passed.append("Chain linkage verified")
        return True

    def _verify_witnesses(self, revisions: list[dict]) -> bool:
        self.log("Verifying witness data...")

        all_valid = True
        witnessed = 0
        for revision in revisions:
            block = revision["verification"]
            witness = block.get("witness")
            if not witness:
                continue
            witnessed += 1
            label = f"Revision {revision.get('revision_id', '?')}"

            genesis = witness.get("domain_manifest_genesis_hash",
                                  witness.get("domain_manifest_verification_hash"))
            root = witness.get("merkle_root")
            expected = digest(concat(genesis, root))
            if witness.get("witness_event_verification_hash") != expected:
                self.checks_failed.append(f"{label}: witness event verification hash mismatch")
                all_valid = False

            tx = witness.get("transaction_hash", witness.get("witness_event_transaction_hash"))
            if tx and witness.get("witness_hash"):
                expected_witness = digest(concat(genesis, root, witness.get("witness_network"), tx))
                if witness["witness_hash"] != expected_witness:
                    self.checks_failed.append(f"{label}: witness hash mismatch")
                    all_valid = False
            elif not tx:
                self.warnings.append(f"{label}: witness event not anchored yet")

            steps = witness.get("structured_merkle_proof") or []
            if not steps and block["verification_hash"] != root:
                self.warnings.append(f"{label}: no Merkle proof included")
            elif not walk_proof(block["verification_hash"], steps, root):
                self.checks_failed.append(f"{label}: Merkle proof does not reach the root")
                all_valid = False
            else:
                self.log(f"  {label}: Merkle proof verified [OK]")

        self.details["witnessed_revisions"] = witnessed
        if all_valid and witnessed:
            self.checks_passed.append(f"All {witnessed} witness proofs verified")
        return all_valid

    def _report(self, result: VerificationResult) -> VerificationReport:
        revisions = self.export.get("revisions")
        return VerificationReport(
            result=result,
            title=str(self.export.get("title", "unknown")),
            revision_count=len(revisions) if isinstance(revisions, list) else 0,
            checks_passed=self.checks_passed,
            checks_failed=self.checks_failed,
            warnings=self.warnings,
            details=self.details,
        )


# ============================================================
# CLI
# ============================================================

BANNERS = {
    VerificationResult.VERIFIED: "[VERIFIED] - All checks passed",
    VerificationResult.TAMPERED: "[TAMPERED] - Hash, chain or proof mismatch detected",
    VerificationResult.INCOMPLETE: "[INCOMPLETE] - No verified revisions",
    VerificationResult.INVALID_FORMAT: "[INVALID_FORMAT] - Export structure invalid",
}


def print_report(report: VerificationReport, json_output: bool = False):
    if json_output:
        output = {
            "result": report.result.value,
            "title": report.title,
            "revision_count": report.revision_count,
            "checks_passed": report.checks_passed,
            "checks_failed": report.checks_failed,
            "warnings": report.warnings,
            "details": report.details,
        }
        print(json.dumps(output, indent=2))
        return

    print("\n" + "=" * 60)
    print(f"  {BANNERS[report.result]}")
    print("=" * 60)

    print(f"\nPage:      {report.title}")
    print(f"Revisions: {report.revision_count}")

    if report.checks_passed:
        print("\nPassed:")
        for check in report.checks_passed:
            print(f"  + {check}")

    if report.checks_failed:
        print("\nFailed:")
        for check in report.checks_failed:
            print(f"  - {check}")

    if report.warnings:
        print("\nWarnings:")
        for warning in report.warnings:
            print(f"  ! {warning}")

    print()


def main():
    parser = argparse.ArgumentParser(
        description="Verify a Chain Witness page export",
        epilog="Exit codes: 0=VERIFIED, 1=TAMPERED, 2=INCOMPLETE, 3=INVALID_FORMAT"
    )
    parser.add_argument("export", type=str, help="Path to the page export JSON file")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Show detailed verification progress")
    parser.add_argument("--json", action="store_true", help="Output result as JSON")

    args = parser.parse_args()

    export_path = Path(args.export)
    if not export_path.exists():
        print(f"ERROR: File not found: {export_path}")
        sys.exit(3)

    try:
        with open(export_path, "r", encoding="utf-8") as f:
            export = json.load(f)
    except json.JSONDecodeError as e:
        print(f"ERROR: Invalid JSON: {e}")
        sys.exit(3)

    if not isinstance(export, dict):
        print("ERROR: Export must be a JSON object")
        sys.exit(3)

    report = ExportVerifier(export, verbose=args.verbose).verify()
    print_report(report, json_output=args.json)

    exit_codes = {
        VerificationResult.VERIFIED: 0,
        VerificationResult.TAMPERED: 1,
        VerificationResult.INCOMPLETE: 2,
        VerificationResult.INVALID_FORMAT: 3,
    }
    sys.exit(exit_codes[report.result])


if __name__ == "__main__":
    main()

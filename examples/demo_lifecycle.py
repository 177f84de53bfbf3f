"""
Demonstration: Complete Witnessing Lifecycle

Shows a page moving through the system from its first revision to a
witnessed revision with a Merkle proof, and on to another domain.

Run with: python -m examples.demo_lifecycle
"""

from chainwitness.core import DomainConfig, Hasher, MerkleProofService, WitnessEngine
from chainwitness.db import InMemoryWitnessStore


def banner(title: str) -> None:
    print("=" * 60)
    print(title)
    print("=" * 60)


def main():
    banner("Chain Witness - Lifecycle Demonstration")
    print()

    engine = WitnessEngine(InMemoryWitnessStore(), DomainConfig(domain_id=Hasher.random_domain_id()))
    print(f"Domain ID: {engine.domain_id[:32]}...")
    print()

    # ================================================================
    # STEP 1: REVISIONS
    # ================================================================
    banner("STEP 1: SAVE REVISIONS")

    first = engine.save_revision("Housing Policy", "Draft: 20,000 new units by 2026.")
    second = engine.save_revision("Housing Policy", "Revised: 25,000 new units by 2027.")
    engine.save_revision("Budget", "Allocated: $1.2B for construction.")

    print(f"[OK] Housing Policy rev {first.revision_id}: {first.verification_hash[:16]}...")
    print(f"[OK] Housing Policy rev {second.revision_id}: {second.verification_hash[:16]}...")
    print(f"   Genesis: {second.genesis_hash[:16]}...")
    print()

    # ================================================================
    # STEP 2: SIGNATURE
    # ================================================================
    banner("STEP 2: WALLET SIGNATURE")

    engine.store_signature(second.revision_id, "0x5ig...", "0xpub...", "0xEditorWallet")
    latest = engine.verification.latest_by_title("Housing Policy")
    print(f"[OK] Signed revision {second.revision_id}")
    print(f"   Committed by revision {latest.revision_id}: {latest.signature_hash[:16]}...")
    print()

    # ================================================================
    # STEP 3: DOMAIN MANIFEST
    # ================================================================
    banner("STEP 3: GENERATE DOMAIN MANIFEST")

    manifest = engine.generate_manifest()
    event = manifest.witness_event
    print(f"[OK] Witness event {event.witness_event_id}: {len(manifest.members)} pages")
    print(f"   Merkle root: {event.merkle_root[:16]}...")
    print(f"   Publish: {event.witness_event_verification_hash[:16]}... on {event.witness_network}")
    print()

    # ================================================================
    # STEP 4: ANCHOR
    # ================================================================
    banner("STEP 4: RECORD PUBLISHING TRANSACTION")

    result = engine.store_witness_transaction(
        event.witness_event_id, "0xPublisher", "0x" + Hasher.digest("demo tx")[:64]
    )
    print(f"[OK] Anchored, {len(result.attached_hashes)} revisions attached")
    print(f"   Manifest page: {result.witness_event.manifest_title[:48]}...")
    print()

    # ================================================================
    # STEP 5: PROOF
    # ================================================================
    banner("STEP 5: MERKLE PROOF")

    path = engine.proof_path(event.witness_event_id, latest.verification_hash)
    for step in path:
        print(f"   depth {step.depth}: {step.left[:12]}... + {(step.right or '-')[:12]} -> {step.successor[:12]}...")
    valid = MerkleProofService.verify_path(latest.verification_hash, path, event.merkle_root)
    print(f"[{'OK' if valid else 'FAIL'}] Proof reaches the published root")
    print()

    # ================================================================
    # STEP 6: EXPORT / IMPORT
    # ================================================================
    banner("STEP 6: MOVE THE PAGE TO ANOTHER DOMAIN")

    export = engine.export_page("Housing Policy")
    other = WitnessEngine(InMemoryWitnessStore(), DomainConfig(domain_id=Hasher.random_domain_id()))
    summary = other.import_page(export)
    report = other.audit_title("Housing Policy")
    print(f"[OK] Imported {summary['revisions']} revisions, {summary['patched']} with verification data")
    print(f"   Audit at the new domain: {'valid' if report.valid else 'INVALID'}")
    print()


if __name__ == "__main__":
    main()

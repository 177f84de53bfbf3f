"""
Document Schemas

Documents are owned by the hosting system. Only the parts the
verification chain needs are modelled here: a title, ordered
revisions, and per-revision content slots.
"""

from pydantic import BaseModel, ConfigDict, Field


MAIN_SLOT = "main"

# Namespaces excluded from witnessing rounds
MANIFEST_NAMESPACE = "Data Accounting:"
FILE_NAMESPACE = "File:"


class Revision(BaseModel):
    """One stored revision of a document."""
    model_config = ConfigDict(frozen=True)

    revision_id: int
    document_title: str
    slots: dict[str, str] = Field(
        ...,
        description="Serialized content per slot role"
    )
    timestamp: str
    comment: str = ""

    @property
    def text(self) -> str:
        """Content of the main slot."""
        return self.slots.get(MAIN_SLOT, "")

    def ordered_slots(self) -> list[str]:
        """
        Slot contents in stable role order.

        "main" first, remaining roles sorted by name.
        """
        roles = sorted(r for r in self.slots if r != MAIN_SLOT)
        if MAIN_SLOT in self.slots:
            roles.insert(0, MAIN_SLOT)
        return [self.slots[r] for r in roles]


def tentative_manifest_title(witness_event_id: int) -> str:
    return f"{MANIFEST_NAMESPACE}DomainManifest {witness_event_id}"


def permanent_manifest_title(domain_manifest_genesis_hash: str) -> str:
    return f"{MANIFEST_NAMESPACE}DomainManifest:{domain_manifest_genesis_hash}"


def backup_title(title: str, chain_height: int, stamp: str) -> str:
    """Title a local document is moved to when an import wins its title."""
    return f"{title}_ChainHeight_{chain_height}_{stamp}"


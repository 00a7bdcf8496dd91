from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from homeserve.models import DocumentBundleView, DocumentType, FileRecord
from homeserve.services.errors import (
    FileTooLargeError,
    QuotaExceededError,
    UnsupportedTypeError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)

MIB = 1024 * 1024


@dataclass(frozen=True)
class DocumentTypeConfig:
    label: str
    max_files: int
    max_size: int
    accepts: FrozenSet[str]


DOCUMENT_TYPE_CONFIG: Dict[DocumentType, DocumentTypeConfig] = {
    DocumentType.BUSINESS_REGISTRATION: DocumentTypeConfig(
        label="Business Registration",
        max_files=3,
        max_size=10 * MIB,
        accepts=frozenset({"application/pdf", "image/jpeg", "image/png"}),
    ),
    DocumentType.REPRESENTATIVE_ID: DocumentTypeConfig(
        label="Representative ID",
        max_files=2,
        max_size=5 * MIB,
        accepts=frozenset({"image/jpeg", "image/png"}),
    ),
    DocumentType.PROFESSIONAL_LICENSES: DocumentTypeConfig(
        label="Professional Licenses",
        max_files=3,
        max_size=10 * MIB,
        accepts=frozenset({"application/pdf", "image/jpeg", "image/png"}),
    ),
    DocumentType.PORTFOLIO: DocumentTypeConfig(
        label="Portfolio",
        max_files=5,
        max_size=10 * MIB,
        accepts=frozenset({"application/pdf", "image/jpeg", "image/png"}),
    ),
}


def parse_document_type(value: str) -> DocumentType:
    try:
        return DocumentType(value)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in DocumentType)
        raise WorkflowValidationError(f"Invalid document type. Allowed: {allowed}") from exc


def _normalize_mime(value: str) -> str:
    return value.split(";", 1)[0].strip().lower()


def mime_accepted(mime_type: str, accepts: Iterable[str]) -> bool:
    normalized = _normalize_mime(mime_type)
    major = normalized.split("/", 1)[0]
    for pattern in accepts:
        if pattern == normalized or pattern == f"{major}/*":
            return True
    return False


class DocumentBundle:
    """Uploaded files of one document type plus the reviewer's verdict.

    ``verified`` and ``notes`` are only changed by review, never by upload.
    """

    def __init__(
        self,
        files: Optional[Iterable[FileRecord]] = None,
        verified: bool = False,
        notes: Optional[str] = None,
    ) -> None:
        self._files: List[FileRecord] = list(files or ())
        self.verified = verified
        self.notes = notes

    @property
    def files(self) -> Tuple[FileRecord, ...]:
        return tuple(self._files)

    def check_upload(self, size: int, mime_type: str, config: DocumentTypeConfig) -> None:
        if len(self._files) + 1 > config.max_files:
            raise QuotaExceededError(f"You can only upload up to {config.max_files} files for {config.label}")
        if size > config.max_size:
            raise FileTooLargeError(f"File exceeds the {config.max_size // MIB}MB limit for {config.label}")
        if not mime_accepted(mime_type, config.accepts):
            allowed = ", ".join(sorted(config.accepts))
            raise UnsupportedTypeError(f"Unsupported file type {mime_type!r} for {config.label}. Allowed: {allowed}")

    def add_file(self, file: FileRecord, config: DocumentTypeConfig) -> FileRecord:
        self.check_upload(file.size, file.mime_type, config)
        self._files.append(file)
        return file

    def find_file(self, file_id: str) -> Optional[FileRecord]:
        return next((item for item in self._files if item.id == file_id), None)

    def remove_file(self, file_id: str) -> FileRecord:
        for idx, item in enumerate(self._files):
            if item.id == file_id:
                return self._files.pop(idx)
        raise WorkflowNotFoundError("Document file not found")

    def mark_reviewed(self, verified: bool, notes: Optional[str] = None) -> None:
        self.verified = verified
        self.notes = notes.strip() if notes and notes.strip() else None

    def clear_review(self) -> None:
        self.verified = False

    def to_view(self) -> DocumentBundleView:
        return DocumentBundleView(files=list(self._files), verified=self.verified, notes=self.notes)

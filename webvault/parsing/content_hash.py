import hashlib


def content_hash(text: str) -> str:
    """SHA-256 hex digest of extracted text, used for change detection."""
    return hashlib.sha256(text.encode("utf-8", errors="ignore")).hexdigest()

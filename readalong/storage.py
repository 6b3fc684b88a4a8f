"""Document records and audio blobs.

JsonDocumentStore keeps one JSON file per document under the output
directory. Blobs go either to the local filesystem (file:// URLs) or to S3.
"""

import json
import logging
import os
import re
import threading
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from readalong.constants import BLOBS_SUBDIR, DOCUMENTS_SUBDIR, OUTPUT_DIR
from readalong.errors import ConfigurationError, TransientError
from readalong.models import DocumentRecord

logger = logging.getLogger(__name__)

DOC_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")


def slug_from_path(path: str) -> str:
    """Document id from a filename: "My Essay.txt" -> "my_essay"."""
    basename = os.path.splitext(os.path.basename(path))[0]
    return re.sub(r"[^a-zA-Z0-9]+", "_", basename).strip("_").lower()


def check_doc_id(doc_id: str) -> str:
    if not DOC_ID_PATTERN.match(doc_id):
        raise ValueError(f"Invalid document id: {doc_id!r} (letters, digits, '_' and '-' only)")
    return doc_id


def parse_s3_uri(uri: str) -> tuple[str, str]:
    """Split an s3:// or https S3 object URL into (bucket, key)."""
    parsed = urlparse(uri)
    path = unquote(parsed.path.lstrip("/"))
    if parsed.scheme == "s3":
        return parsed.netloc, path
    host = parsed.netloc
    if host.startswith(("s3.", "s3-")):
        # path style: https://s3.<region>.amazonaws.com/<bucket>/<key>
        bucket, _, key = path.partition("/")
        return bucket, key
    # virtual-hosted style: https://<bucket>.s3.<region>.amazonaws.com/<key>
    return host.split(".s3", 1)[0], path


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DocumentStore(Protocol):
    def get(self, doc_id: str) -> DocumentRecord | None:
        ...

    def save(self, record: DocumentRecord) -> None:
        ...

    def update(self, doc_id: str, **changes) -> DocumentRecord:
        ...


class BlobStore(Protocol):
    def put(self, name: str, data: bytes, content_type: str) -> str:
        """Store data and return its URL."""
        ...

    def read(self, url: str) -> bytes:
        ...


class JsonDocumentStore:
    """One <doc_id>.json file per document. Thread-safe within a process."""

    def __init__(self, root: str | Path = os.path.join(OUTPUT_DIR, DOCUMENTS_SUBDIR)) -> None:
        self.root = Path(root)
        self._lock = threading.Lock()

    def _path(self, doc_id: str) -> Path:
        return self.root / f"{check_doc_id(doc_id)}.json"

    def get(self, doc_id: str) -> DocumentRecord | None:
        path = self._path(doc_id)
        if not path.exists():
            return None
        with open(path) as f:
            return DocumentRecord.from_dict(json.load(f))

    def save(self, record: DocumentRecord) -> None:
        path = self._path(record.id)
        self.root.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w") as f:
            json.dump(record.to_dict(), f, indent=2)
        os.replace(tmp, path)

    def update(self, doc_id: str, **changes) -> DocumentRecord:
        """Apply field changes to a record, creating it if missing."""
        with self._lock:
            record = self.get(doc_id) or DocumentRecord(id=doc_id)
            record = replace(record, updated_at=_now(), **changes)
            self.save(record)
        return record

    def list_ids(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(p.stem for p in self.root.glob("*.json"))


class LocalBlobStore:
    """Blobs as files under root, addressed by file:// URLs."""

    def __init__(self, root: str | Path = os.path.join(OUTPUT_DIR, BLOBS_SUBDIR)) -> None:
        self.root = Path(root)

    def put(self, name: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.root / os.path.basename(name)
        path.write_bytes(data)
        logger.debug("Wrote %d bytes to %s (%s)", len(data), path, content_type)
        return path.resolve().as_uri()

    def read(self, url: str) -> bytes:
        parsed = urlparse(url)
        if parsed.scheme != "file":
            raise ValueError(f"Not a file URL: {url}")
        return Path(url2pathname(parsed.path)).read_bytes()


class S3BlobStore:
    """Blobs as objects in one S3 bucket."""

    def __init__(self, bucket: str | None = None, region: str | None = None, prefix: str = "", client=None) -> None:
        self.bucket = bucket or os.getenv("AWS_S3_BUCKET_NAME")
        self.region = region or os.getenv("AWS_REGION")
        if not self.bucket or not self.region:
            raise ConfigurationError("S3 blob storage needs AWS_S3_BUCKET_NAME and AWS_REGION.")
        self.prefix = prefix
        self._client = client or boto3.client("s3", region_name=self.region)

    def put(self, name: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        key = f"{self.prefix}{name}"
        try:
            self._client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (ClientError, BotoCoreError) as e:
            raise TransientError(f"Upload of {key} to S3 failed: {e}") from e
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def read(self, url: str) -> bytes:
        bucket, key = parse_s3_uri(url)
        try:
            return self._client.get_object(Bucket=bucket, Key=key)["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise TransientError(f"Download of {url} from S3 failed: {e}") from e

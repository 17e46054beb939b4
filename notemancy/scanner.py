"""
Vault scanning.

Walks each vault root, resolves every matching file's virtual path (the
path components after the indicator segment, optionally prefixed by a
frontmatter ``folder``), and upserts the result into the metadata store.

Per-file work runs on a thread pool; the calling thread is the only
writer to the metadata store. Failures are collected into a ScanReport
and never abort the scan.
"""

import logging
import os
from collections import Counter
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePath
from typing import Iterable, Iterator, Optional

import pathspec

from .config import (
    DEFAULT_ATTACHMENT_EXTENSIONS,
    DEFAULT_DOCUMENT_EXTENSIONS,
    KbConfig,
    resolve_vaults,
)
from .errors import IndicatorNotFoundError, KbError, StorageIOError, TaskFailureError
from .frontmatter import DELIMITER, parse_frontmatter
from .metadata_store import MetadataStore
from .types import ScannedFile


logger = logging.getLogger(__name__)

IGNORE_FILES = (".gitignore", ".ignore")

Vaults = list[tuple[str, list[Path]]]


# -----------------------------------------------------------------------------
# Path resolution
# -----------------------------------------------------------------------------

def extract_virtual_path(path, indicator: str) -> str:
    """
    Return the components of ``path`` after the first ``indicator`` segment.

    Repeated indicator segments directly after the first are skipped, so
    the virtual path never starts with the indicator.

    Raises:
        IndicatorNotFoundError: If no component equals the indicator
    """
    parts = [p for p in PurePath(path).parts if p != PurePath(path).anchor]
    try:
        start = parts.index(indicator) + 1
    except ValueError:
        raise IndicatorNotFoundError(path, indicator) from None
    while start < len(parts) and parts[start] == indicator:
        start += 1
    return "/".join(parts[start:])


def has_indicator(path, indicator: str) -> bool:
    return indicator in PurePath(path).parts


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, timezone.utc).isoformat()


def read_frontmatter(path: Path) -> Optional[dict]:
    """Parse the frontmatter of a file, or None if it has none.

    Only the first line is read for files that don't open with ``---``, so
    binary attachments are cheap to check.
    """
    with open(path, "rb") as f:
        first = f.readline()
        if first.rstrip(b"\r\n") != DELIMITER.encode():
            return None
        rest = f.read()
    try:
        text = (first + rest).decode("utf-8")
    except UnicodeDecodeError:
        return None
    return parse_frontmatter(text)


def process_file(path: Path, indicator: str, vault: str) -> ScannedFile:
    """
    Resolve one file into a ScannedFile.

    Raises:
        IndicatorNotFoundError: If the path has no indicator segment
        StorageIOError: If the file cannot be stat'ed or read
    """
    virtual_path = extract_virtual_path(path, indicator)
    try:
        st = path.stat()
        metadata = read_frontmatter(path)
    except OSError as e:
        raise StorageIOError(f"Cannot read {path}: {e}") from e

    modified = _iso(st.st_mtime)
    birth = getattr(st, "st_birthtime", None)
    created = _iso(birth) if birth is not None else modified

    if metadata is not None:
        folder = metadata.get("folder")
        if isinstance(folder, str):
            virtual_path = f"{folder.rstrip('/')}/{virtual_path}"

    return ScannedFile(
        vault=vault,
        path=str(path),
        virtual_path=virtual_path,
        metadata=metadata,
        last_modified=modified,
        created=created,
    )


# -----------------------------------------------------------------------------
# Directory walking
# -----------------------------------------------------------------------------

def _load_ignore_spec(directory: Path) -> Optional[pathspec.PathSpec]:
    lines: list[str] = []
    for name in IGNORE_FILES:
        ignore_file = directory / name
        if ignore_file.is_file():
            try:
                lines.extend(ignore_file.read_text(encoding="utf-8", errors="replace").splitlines())
            except OSError as e:
                logger.warning("Cannot read %s: %s", ignore_file, e)
    if not lines:
        return None
    return pathspec.GitIgnoreSpec.from_lines(lines)


def _is_ignored(path: Path, is_dir: bool, specs: list[tuple[Path, pathspec.PathSpec]]) -> bool:
    for base, spec in specs:
        rel = path.relative_to(base).as_posix()
        if is_dir:
            rel += "/"
        if spec.match_file(rel):
            return True
    return False


def iter_vault_files(root, indicator: str, extensions: Iterable[str]) -> Iterator[Path]:
    """
    Yield files under ``root`` whose extension is allowed and whose path
    contains the indicator segment.

    Hidden entries are skipped; ``.gitignore`` and ``.ignore`` files are
    honored at every directory level.
    """
    root = Path(root).expanduser().absolute()
    allowed = {ext.lower().lstrip(".") for ext in extensions}
    inherited: dict[str, list[tuple[Path, pathspec.PathSpec]]] = {str(root): []}

    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        specs = inherited.pop(dirpath, [])
        own = _load_ignore_spec(current)
        if own is not None:
            specs = specs + [(current, own)]

        kept = []
        for name in sorted(dirnames):
            if name.startswith("."):
                continue
            child = current / name
            if _is_ignored(child, True, specs):
                continue
            kept.append(name)
            inherited[str(child)] = specs
        dirnames[:] = kept

        for name in sorted(filenames):
            if name.startswith("."):
                continue
            suffix = os.path.splitext(name)[1].lower().lstrip(".")
            if suffix not in allowed:
                continue
            path = current / name
            if _is_ignored(path, False, specs):
                continue
            if has_indicator(path, indicator):
                yield path


# -----------------------------------------------------------------------------
# Reports
# -----------------------------------------------------------------------------

@dataclass
class ScanReport:
    """Outcome of a scan: per-vault counts and per-file failures."""
    kind: str = "markdown"
    counts: Counter = field(default_factory=Counter)
    errors: list[tuple[str, str]] = field(default_factory=list)

    @property
    def scanned(self) -> int:
        return sum(self.counts.values())

    @property
    def failed(self) -> int:
        return len(self.errors)

    def summary(self) -> str:
        lines = []
        if self.errors:
            lines.append(f"The following errors occurred during {self.kind} scanning:")
            for path, message in self.errors:
                lines.append(f"File {path}: {message}")
        else:
            lines.append(f"No errors during {self.kind} scanning.")
        lines.append("")
        lines.append(f"{self.kind.capitalize()} scanning summary:")
        for vault in sorted(self.counts):
            lines.append(f"Vault {vault}: {self.counts[vault]} {self.kind} files scanned.")
        return "\n".join(lines) + "\n"

    def __str__(self) -> str:
        return self.summary()


def _worker_error(exc: BaseException) -> KbError:
    if isinstance(exc, KbError):
        return exc
    failure = TaskFailureError(f"Scan worker failed: {exc!r}")
    failure.__cause__ = exc
    return failure


# -----------------------------------------------------------------------------
# Scanning
# -----------------------------------------------------------------------------

def collect_tasks(
    vaults: Vaults,
    indicator: str,
    extensions: Iterable[str],
    report: ScanReport,
) -> list[tuple[str, Path]]:
    """List (vault, file) work items, recording missing roots as errors."""
    extensions = list(extensions)
    tasks = []
    for vault, roots in vaults:
        for root in roots:
            root = Path(root).expanduser()
            if not root.is_dir():
                report.errors.append((str(root), f"Vault root not found for '{vault}'"))
                logger.warning("Vault %s: root %s is not a directory", vault, root)
                continue
            tasks.extend((vault, path) for path in iter_vault_files(root, indicator, extensions))
    return tasks


def scan_documents(
    store: MetadataStore,
    vaults: Vaults,
    indicator: str,
    extensions: Iterable[str] = DEFAULT_DOCUMENT_EXTENSIONS,
    workers: Optional[int] = None,
) -> tuple[list[ScannedFile], ScanReport]:
    """
    Scan vaults for documents and upsert them into the pagetable.

    Files are resolved in parallel; upserts happen on the calling thread
    as results complete.

    Returns:
        (successfully stored files, report)
    """
    report = ScanReport(kind="markdown")
    tasks = collect_tasks(vaults, indicator, extensions, report)
    scanned: list[ScannedFile] = []

    with ThreadPoolExecutor(max_workers=workers or None, thread_name_prefix="notemancy-scan") as pool:
        futures: dict[Future, tuple[str, Path]] = {
            pool.submit(process_file, path, indicator, vault): (vault, path)
            for vault, path in tasks
        }
        for future in as_completed(futures):
            vault, path = futures[future]
            try:
                sf = future.result()
            except Exception as e:
                error = _worker_error(e)
                report.errors.append((str(path), f"Processing error: {error}"))
                logger.warning("Failed to scan %s: %s", path, error)
                continue
            try:
                store.upsert_page(sf)
            except KbError as e:
                report.errors.append((str(path), f"DB insert error: {e}"))
                logger.warning("Failed to store %s: %s", path, e)
                continue
            scanned.append(sf)
            report.counts[vault] += 1

    logger.info(
        "Scanned %d markdown files (%d errors) across %d vaults",
        report.scanned, report.failed, len(vaults),
    )
    return scanned, report


def scan_attachments(
    store: MetadataStore,
    vaults: Vaults,
    indicator: str,
    extensions: Iterable[str],
    type: str = "image",
) -> tuple[list[ScannedFile], ScanReport]:
    """
    Scan vaults for attachments and upsert them into the attachments table.

    Attachment volume is small, so this runs sequentially.
    """
    report = ScanReport(kind=type)
    scanned: list[ScannedFile] = []
    for vault, path in collect_tasks(vaults, indicator, extensions, report):
        try:
            sf = process_file(path, indicator, vault)
        except KbError as e:
            report.errors.append((str(path), f"Processing error: {e}"))
            continue
        try:
            store.upsert_attachment(sf.path, sf.virtual_path, type)
        except KbError as e:
            report.errors.append((str(path), f"DB insert error: {e}"))
            continue
        scanned.append(sf)
        report.counts[vault] += 1

    logger.info("Scanned %d %s files (%d errors)", report.scanned, type, report.failed)
    return scanned, report


class Scanner:
    """
    Scans the configured vaults into a metadata store.
    """

    def __init__(
        self,
        vaults: Vaults,
        indicator: str,
        store: MetadataStore,
        *,
        workers: Optional[int] = None,
        document_extensions: Iterable[str] = DEFAULT_DOCUMENT_EXTENSIONS,
        attachment_extensions: Iterable[str] = DEFAULT_ATTACHMENT_EXTENSIONS,
    ):
        self.vaults = vaults
        self.indicator = indicator
        self.store = store
        self.workers = workers
        self.document_extensions = list(document_extensions)
        self.attachment_extensions = list(attachment_extensions)

    @classmethod
    def from_config(cls, config: KbConfig, store: MetadataStore) -> "Scanner":
        return cls(
            resolve_vaults(config),
            config.indicator,
            store,
            workers=config.scan.workers or None,
            document_extensions=config.scan.document_extensions,
            attachment_extensions=config.scan.attachment_extensions,
        )

    def scan_markdown_files(self) -> tuple[list[ScannedFile], ScanReport]:
        return scan_documents(
            self.store, self.vaults, self.indicator, self.document_extensions, self.workers,
        )

    def scan_images(self) -> tuple[list[ScannedFile], ScanReport]:
        return scan_attachments(
            self.store, self.vaults, self.indicator, self.attachment_extensions, "image",
        )

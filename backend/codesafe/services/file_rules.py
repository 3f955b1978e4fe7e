"""
CodeSafe Backend — Attachment Validation Rules
================================================

What:  Decides whether an uploaded file may be attached to a note, and under
       which category (document, image, video, other) it is stored.
Why:   The category picks the remote resource type and the folder an object
       lands in, and the denylist keeps executable content off the store.
How:   A frozen `FileRules` value holds the category tables, the denylist and
       the size ceiling. It is built once at import (`DEFAULT_FILE_RULES`)
       and handed to the attachment service; every check is a pure method.
Who:   AttachmentService.upload(); the upload route for error messages.

Check order (cheapest and most security relevant first):
    1. Extension present          → else "unsupported type"
    2. Extension not denylisted   → checked before any category lookup
    3. Extension maps to category → else "unsupported type"
    4. Declared category matches  → when the client declared one
    5. Size within (0, ceiling]
    6. Declared MIME type allowed → skipped for missing / generic types
    7. Sniffed content type       → python-magic reads the leading bytes;
                                    executables are rejected under any name,
                                    anything else must fit the category
"""

import logging
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Mapping, Optional, Tuple

import magic

from codesafe.config import settings
from codesafe.exceptions import CodeSafeError, ValidationError

logger = logging.getLogger(__name__)

CATEGORY_DOCUMENT = "document"
CATEGORY_IMAGE = "image"
CATEGORY_VIDEO = "video"
CATEGORY_OTHER = "other"

GENERIC_CONTENT_TYPE = "application/octet-stream"

# Older clients send the plural form
_CATEGORY_ALIASES = {"others": CATEGORY_OTHER}

FORBIDDEN_EXTENSIONS = (
    ".exe", ".bat", ".cmd", ".sh", ".ps1", ".js", ".vbs", ".jar", ".php", ".py", ".rb",
)

CATEGORY_EXTENSIONS: Mapping[str, Tuple[str, ...]] = {
    CATEGORY_DOCUMENT: (
        ".pdf", ".doc", ".docx", ".txt", ".rtf", ".odt", ".ppt", ".pptx", ".xls",
        ".xlsx", ".csv", ".md", ".json", ".xml", ".yaml", ".yml",
    ),
    CATEGORY_IMAGE: (
        ".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp", ".tiff", ".tif", ".svg",
        ".ico", ".heic",
    ),
    CATEGORY_VIDEO: (
        ".mp4", ".mov", ".mkv", ".webm", ".avi", ".wmv", ".flv", ".m4v", ".3gp",
    ),
    CATEGORY_OTHER: (
        ".zip", ".rar", ".7z", ".tar", ".gz", ".psd", ".ai", ".figma", ".blend",
        ".obj", ".stl", ".log", ".dat",
    ),
}

CATEGORY_MIME_TYPES: Mapping[str, Tuple[str, ...]] = {
    CATEGORY_DOCUMENT: (
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "text/plain",
        "application/rtf",
        "application/vnd.oasis.opendocument.text",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "text/csv",
        "text/markdown",
        "application/json",
        "application/xml",
        "text/xml",
        "application/x-yaml",
        "application/yaml",
        "text/yaml",
    ),
    CATEGORY_IMAGE: (
        "image/jpeg",
        "image/png",
        "image/webp",
        "image/gif",
        "image/bmp",
        "image/tiff",
        "image/svg+xml",
        "image/x-icon",
        "image/vnd.microsoft.icon",
        "image/heic",
    ),
    CATEGORY_VIDEO: (
        "video/mp4",
        "video/quicktime",
        "video/x-matroska",
        "video/webm",
        "video/x-msvideo",
        "video/x-ms-wmv",
        "video/x-flv",
        "video/x-m4v",
        "video/3gpp",
    ),
    CATEGORY_OTHER: (
        "application/zip",
        "application/x-zip-compressed",
        "application/x-rar-compressed",
        "application/vnd.rar",
        "application/x-7z-compressed",
        "application/x-tar",
        "application/gzip",
        "application/x-gzip",
        "image/vnd.adobe.photoshop",
        "application/postscript",
        GENERIC_CONTENT_TYPE,
    ),
}

# Bytes handed to libmagic; enough for zip-based office formats
SNIFF_BYTES = 8192

# What libmagic reports for programs and scripts, whatever the file is called
EXECUTABLE_MIME_TYPES: FrozenSet[str] = frozenset({
    "application/x-dosexec",
    "application/x-msdownload",
    "application/vnd.microsoft.portable-executable",
    "application/x-executable",
    "application/x-pie-executable",
    "application/x-sharedlib",
    "application/x-mach-binary",
    "application/x-elf",
    "application/java-archive",
    "application/x-java-applet",
    "application/javascript",
    "text/javascript",
    "text/x-shellscript",
    "text/x-msdos-batch",
    "text/x-php",
    "text/x-python",
    "text/x-script.python",
    "application/x-bytecode.python",
    "text/x-ruby",
    "text/x-perl",
})

# Types libmagic reports for formats it only recognises by their wrapper
# (OOXML is a zip, legacy Office files are OLE). Accepted from the sniffer on
# top of the category's own MIME types; "text/*" admits any non-executable
# text, since libmagic guesses a language for source-like plain text.
SNIFFED_EQUIVALENTS: Mapping[str, Tuple[str, ...]] = {
    CATEGORY_DOCUMENT: (
        "text/*",
        "application/zip",
        "application/vnd.ms-office",
        "application/x-ole-storage",
        "application/cdfv2",
        "text/rtf",
        "application/csv",
    ),
    CATEGORY_IMAGE: (
        "image/x-ms-bmp",
        "image/svg",
    ),
    CATEGORY_VIDEO: (
        "video/x-ms-asf",
    ),
    CATEGORY_OTHER: (
        "text/*",
        "application/x-rar",
        "application/pdf",
        "model/stl",
    ),
}


def base_name(filename: Optional[str]) -> str:
    """Strip any client-side directory part (browsers on Windows send full paths)."""
    if not filename:
        return ""
    return filename.replace("\\", "/").rsplit("/", 1)[-1].strip()


def extension_of(filename: Optional[str]) -> str:
    """Lower-cased extension including the dot, or "" when there is none."""
    name = base_name(filename)
    dot = name.rfind(".")
    if dot <= 0 or dot == len(name) - 1:
        return ""
    return name[dot:].lower()


def normalize_content_type(content_type: Optional[str]) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def normalize_category(category: Optional[str]) -> str:
    value = (category or "").strip().lower()
    return _CATEGORY_ALIASES.get(value, value)


def sniff_content_type(content: bytes) -> str:
    """
    MIME type of `content` as libmagic sees it, from the leading bytes.

    Raises:
        CodeSafeError: libmagic could not inspect the buffer
    """
    try:
        detected = magic.from_buffer(content[:SNIFF_BYTES], mime=True)
    except magic.MagicException as e:
        logger.error("MIME type detection failed: %s", str(e))
        raise CodeSafeError(
            message="Could not verify file type. Please try again.",
            context={"error": str(e)},
        ) from e
    return normalize_content_type(detected) or GENERIC_CONTENT_TYPE


def human_size(size_bytes: int) -> str:
    """
    Format a byte count for display: "512 B", "1.5 KB", "50 MB".

    Up to two decimals, trailing zeros dropped.
    """
    units = ("B", "KB", "MB", "GB")
    value = float(size_bytes)
    order = 0
    while value >= 1024 and order < len(units) - 1:
        order += 1
        value /= 1024
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {units[order]}"


@dataclass(frozen=True)
class FileCheck:
    """Outcome of a successful evaluation."""
    category: str
    content_type: str
    extension: str


@dataclass(frozen=True)
class CategoryRule:
    name: str
    extensions: FrozenSet[str]
    mime_types: FrozenSet[str]
    sniffed_types: FrozenSet[str] = frozenset()

    def accepts_sniffed(self, content_type: str) -> bool:
        if content_type in self.sniffed_types:
            return True
        family = content_type.split("/", 1)[0]
        return f"{family}/*" in self.sniffed_types


@dataclass(frozen=True)
class FileRules:
    """
    Immutable attachment policy.

    `categories` is ordered; detection returns the first category whose
    extension set contains the file's extension.
    """

    categories: Tuple[CategoryRule, ...]
    forbidden_extensions: FrozenSet[str]
    max_file_size: int

    # ── Lookups ───────────────────────────────────────────────────────────

    @property
    def category_names(self) -> Tuple[str, ...]:
        return tuple(rule.name for rule in self.categories)

    def rule_for(self, category: Optional[str]) -> Optional[CategoryRule]:
        wanted = normalize_category(category)
        for rule in self.categories:
            if rule.name == wanted:
                return rule
        return None

    def is_forbidden(self, filename: Optional[str]) -> bool:
        return extension_of(filename) in self.forbidden_extensions

    def detect_category(self, filename: Optional[str]) -> Optional[str]:
        """
        Category for a filename, or None when the file is unsupported.

        Denylisted extensions yield None before any table is consulted.
        """
        ext = extension_of(filename)
        if not ext or ext in self.forbidden_extensions:
            return None
        for rule in self.categories:
            if ext in rule.extensions:
                return rule.name
        return None

    def is_extension_allowed(self, extension: str, category: Optional[str]) -> bool:
        rule = self.rule_for(category)
        return rule is not None and extension.lower() in rule.extensions

    def is_mime_allowed(self, content_type: Optional[str], category: Optional[str]) -> bool:
        rule = self.rule_for(category)
        return rule is not None and normalize_content_type(content_type) in rule.mime_types

    def is_size_allowed(self, size_bytes: int) -> bool:
        return 0 < size_bytes <= self.max_file_size

    # ── Checks that raise ─────────────────────────────────────────────────

    def check_size(self, size_bytes: int) -> None:
        if size_bytes <= 0:
            raise ValidationError(
                message="The selected file is empty.",
                field="file",
                context={"size_bytes": size_bytes},
            )
        if size_bytes > self.max_file_size:
            raise ValidationError(
                message=(
                    f"File size ({human_size(size_bytes)}) exceeds the maximum "
                    f"of {human_size(self.max_file_size)}."
                ),
                field="file",
                context={"size_bytes": size_bytes, "max_size_bytes": self.max_file_size},
            )

    def check_sniffed_type(self, sniffed: str, extension: str, category: str) -> None:
        """
        Reject content whose real type contradicts its name.

        Executable content is refused in every category. Otherwise the sniffed
        type must be one of the category's types or a known wrapper type;
        `application/octet-stream` (libmagic found no signature) passes.
        """
        if sniffed in EXECUTABLE_MIME_TYPES:
            logger.warning("Rejected %s upload with executable content (%s)", extension, sniffed)
            raise ValidationError(
                message="File content is executable and is not allowed for security reasons.",
                field="file",
                context={"extension": extension, "detected_content_type": sniffed},
            )
        rule = self.rule_for(category)
        if rule is None or not rule.accepts_sniffed(sniffed):
            raise ValidationError(
                message=(
                    f"File content ({sniffed}) does not match its '{extension}' extension."
                ),
                field="file",
                context={"extension": extension, "detected_content_type": sniffed},
            )

    def evaluate(
        self,
        filename: Optional[str],
        content: bytes,
        content_type: Optional[str] = None,
        declared_category: Optional[str] = None,
    ) -> FileCheck:
        """
        Run the full check pipeline for one upload.

        Args:
            filename: Name sent by the client (may include a path)
            content: The uploaded bytes (sized, then sniffed with python-magic)
            content_type: MIME type sent by the client, if any
            declared_category: Category the client claims, if any

        Returns:
            FileCheck with the detected category and the content type to store.

        Raises:
            ValidationError naming the first rule the file breaks.
        """
        name = base_name(filename)
        if not name:
            raise ValidationError(message="Please select a file to upload.", field="file")

        ext = extension_of(name)
        if not ext:
            raise ValidationError(
                message=(
                    "Files without an extension are not supported. "
                    + self.supported_types_message()
                ),
                field="file",
                context={"extension": ""},
            )

        if ext in self.forbidden_extensions:
            raise ValidationError(
                message=f"Files of type '{ext}' are not allowed for security reasons.",
                field="file",
                context={"extension": ext},
            )

        category = self.detect_category(name)
        if category is None:
            raise ValidationError(
                message=f"File type '{ext}' is not supported. " + self.supported_types_message(),
                field="file",
                context={"extension": ext},
            )

        if declared_category:
            declared = normalize_category(declared_category)
            if declared not in self.category_names:
                raise ValidationError(
                    message=(
                        f"Unknown file category '{declared_category}'. "
                        f"Expected one of: {', '.join(self.category_names)}."
                    ),
                    field="category",
                )
            if declared != category:
                raise ValidationError(
                    message=(
                        f"A '{ext}' file belongs to the {category} category, "
                        f"not {declared}."
                    ),
                    field="category",
                    context={"declared": declared, "detected": category},
                )

        self.check_size(len(content))

        declared_mime = normalize_content_type(content_type)
        if declared_mime == GENERIC_CONTENT_TYPE:
            declared_mime = ""
        if declared_mime and not self.is_mime_allowed(declared_mime, category):
            raise ValidationError(
                message=f"Content type '{declared_mime}' does not match a {category} file.",
                field="file",
                context={"content_type": declared_mime, "category": category},
            )

        sniffed = sniff_content_type(content)
        self.check_sniffed_type(sniffed, ext, category)

        # The client's claim wins when it was checked; otherwise keep what
        # libmagic named, if it is a type the category lists
        rule = self.rule_for(category)
        if declared_mime:
            stored_mime = declared_mime
        elif sniffed in rule.mime_types:
            stored_mime = sniffed
        else:
            stored_mime = GENERIC_CONTENT_TYPE
        return FileCheck(category=category, content_type=stored_mime, extension=ext)

    # ── Messages ──────────────────────────────────────────────────────────

    def supported_types_message(self) -> str:
        lines = [
            f"{rule.name.upper()}: {', '.join(sorted(rule.extensions))}"
            for rule in self.categories
        ]
        return "Supported file types:\n" + "\n".join(lines)


def build_file_rules(
    max_file_size: int,
    extensions: Mapping[str, Iterable[str]] = CATEGORY_EXTENSIONS,
    mime_types: Mapping[str, Iterable[str]] = CATEGORY_MIME_TYPES,
    forbidden: Iterable[str] = FORBIDDEN_EXTENSIONS,
    sniffed_equivalents: Mapping[str, Iterable[str]] = SNIFFED_EQUIVALENTS,
) -> FileRules:
    categories = []
    for name, exts in extensions.items():
        own_types = frozenset(m.lower() for m in mime_types.get(name, ()))
        wrappers = frozenset(m.lower() for m in sniffed_equivalents.get(name, ()))
        categories.append(
            CategoryRule(
                name=name,
                extensions=frozenset(e.lower() for e in exts),
                mime_types=own_types,
                sniffed_types=own_types | wrappers | {GENERIC_CONTENT_TYPE},
            )
        )
    return FileRules(
        categories=tuple(categories),
        forbidden_extensions=frozenset(e.lower() for e in forbidden),
        max_file_size=max_file_size,
    )


DEFAULT_FILE_RULES = build_file_rules(settings.max_file_size)

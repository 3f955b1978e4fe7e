"""
CodeSafe Backend — Attachment Rule Unit Tests
===============================================

What:  Tests for FileRules (category detection, denylist, size, MIME checks)
       and the formatting helpers.
Why:   The rules decide what reaches the remote store; the denylist is a
       security boundary.

Test Strategy:
    ✅ Detection per category, case-insensitive
    ✅ Denylisted extensions rejected whatever category is declared
    ✅ Declared/detected category mismatch rejected
    ✅ Size bounds (empty, at limit, over limit)
    ✅ Declared MIME checks; missing / generic types take the sniffed type
    ✅ Content sniffed with python-magic: renamed executables rejected
"""

from unittest.mock import patch

import magic
import pytest

from codesafe.exceptions import CodeSafeError, ValidationError
from codesafe.services.file_rules import (
    DEFAULT_FILE_RULES,
    SNIFF_BYTES,
    build_file_rules,
    extension_of,
    human_size,
    normalize_category,
    sniff_content_type,
)


class TestDetection:
    """Extension → category mapping."""

    def setup_method(self):
        self.rules = DEFAULT_FILE_RULES

    def test_detects_each_category(self):
        assert self.rules.detect_category("report.pdf") == "document"
        assert self.rules.detect_category("photo.jpeg") == "image"
        assert self.rules.detect_category("clip.mp4") == "video"
        assert self.rules.detect_category("archive.zip") == "other"

    def test_detection_is_case_insensitive(self):
        assert self.rules.detect_category("PHOTO.PNG") == "image"
        assert self.rules.detect_category("Notes.Md") == "document"

    def test_windows_path_is_stripped(self):
        assert self.rules.detect_category("C:\\Users\\me\\scan.tiff") == "image"

    def test_unknown_extension_has_no_category(self):
        assert self.rules.detect_category("model.xyz") is None

    def test_denylisted_extension_has_no_category(self):
        assert self.rules.detect_category("script.js") is None
        assert self.rules.is_forbidden("setup.EXE")

    def test_extension_edge_cases(self):
        assert extension_of("noextension") == ""
        assert extension_of(".bashrc") == ""
        assert extension_of("trailing.") == ""
        assert extension_of("archive.tar.gz") == ".gz"

    def test_extension_and_mime_lookups(self):
        assert self.rules.is_extension_allowed(".PDF", "document")
        assert not self.rules.is_extension_allowed(".pdf", "image")
        assert self.rules.is_mime_allowed("image/png; charset=binary", "image")
        assert not self.rules.is_mime_allowed("image/png", "video")
        assert not self.rules.is_mime_allowed("image/png", "nonsense")


PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<<>>\nendobj\ntrailer\n<<>>\n%%EOF\n"
PNG_BYTES = (
    b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01"
    b"\x08\x02\x00\x00\x00\x90wS\xde"
)
SNIFF = "codesafe.services.file_rules.magic.from_buffer"


class TestEvaluate:
    """The full check pipeline run for every upload."""

    def setup_method(self):
        self.rules = build_file_rules(max_file_size=1024)

    def test_valid_file_passes(self):
        check = self.rules.evaluate("report.pdf", PDF_BYTES, content_type="application/pdf")
        assert check.category == "document"
        assert check.content_type == "application/pdf"
        assert check.extension == ".pdf"

    def test_missing_filename_rejected(self):
        with pytest.raises(ValidationError, match="select a file"):
            self.rules.evaluate("", PDF_BYTES)

    def test_missing_extension_lists_supported_types(self):
        with pytest.raises(ValidationError, match="without an extension") as exc_info:
            self.rules.evaluate("README", b"read me")
        assert "Supported file types:" in exc_info.value.message

    @pytest.mark.parametrize("declared", [None, "document", "image", "video", "other"])
    def test_denylisted_extension_rejected_for_any_category(self, declared):
        with pytest.raises(ValidationError, match="security reasons"):
            self.rules.evaluate("payload.exe", b"MZ\x90\x00", declared_category=declared)

    def test_unsupported_extension_rejected(self):
        with pytest.raises(ValidationError, match="'.xyz' is not supported"):
            self.rules.evaluate("model.xyz", b"data")

    def test_declared_category_mismatch_rejected(self):
        with pytest.raises(ValidationError, match="belongs to the image category") as exc_info:
            self.rules.evaluate("photo.png", PNG_BYTES, declared_category="document")
        assert exc_info.value.context["field"] == "category"

    def test_declared_category_match_and_alias(self):
        assert self.rules.evaluate("photo.png", PNG_BYTES, declared_category="IMAGE").category == "image"
        with patch(SNIFF, return_value="application/zip"):
            assert self.rules.evaluate("data.zip", b"PK", declared_category="others").category == "other"

    def test_unknown_declared_category_rejected(self):
        with pytest.raises(ValidationError, match="Unknown file category"):
            self.rules.evaluate("photo.png", PNG_BYTES, declared_category="audio")

    def test_empty_file_rejected(self):
        with pytest.raises(ValidationError, match="empty"):
            self.rules.evaluate("photo.png", b"")

    def test_size_at_limit_passes(self):
        self.rules.evaluate("photo.png", PNG_BYTES + b"\x00" * (1024 - len(PNG_BYTES)))

    def test_size_over_limit_rejected(self):
        with pytest.raises(ValidationError, match="exceeds the maximum of 1 KB"):
            self.rules.evaluate("photo.png", b"\x00" * 1025)

    def test_mismatched_declared_mime_rejected(self):
        with pytest.raises(ValidationError, match="does not match a image file"):
            self.rules.evaluate("photo.png", PNG_BYTES, content_type="application/pdf")

    def test_missing_mime_takes_sniffed_type(self):
        check = self.rules.evaluate("photo.png", PNG_BYTES)
        assert check.content_type == "image/png"

    def test_generic_mime_takes_sniffed_type(self):
        check = self.rules.evaluate("report.pdf", PDF_BYTES, content_type="application/octet-stream")
        assert check.content_type == "application/pdf"

    def test_mime_parameters_ignored(self):
        with patch(SNIFF, return_value="text/plain"):
            check = self.rules.evaluate("notes.txt", b"milk", content_type="text/plain; charset=utf-8")
        assert check.content_type == "text/plain"


class TestContentSniffing:
    """python-magic decides what the bytes really are, whatever the name says."""

    def setup_method(self):
        self.rules = build_file_rules(max_file_size=1024)

    def test_renamed_executable_rejected(self):
        with patch(SNIFF, return_value="application/x-dosexec") as sniff:
            with pytest.raises(ValidationError, match="executable") as exc_info:
                self.rules.evaluate(
                    "invoice.pdf",
                    b"MZ\x90\x00" + b"\x00" * 60,
                    content_type="application/pdf",
                    declared_category="document",
                )
        sniff.assert_called_once()
        assert exc_info.value.context["detected_content_type"] == "application/x-dosexec"

    def test_renamed_script_rejected_as_text_document(self):
        with patch(SNIFF, return_value="text/x-shellscript"):
            with pytest.raises(ValidationError, match="security reasons"):
                self.rules.evaluate("notes.txt", b"#!/bin/sh\nrm -rf /\n")

    def test_content_of_another_category_rejected(self):
        with pytest.raises(ValidationError, match=r"\(application/pdf\) does not match its '.png'"):
            self.rules.evaluate("photo.png", PDF_BYTES)

    def test_text_posing_as_image_rejected(self):
        with patch(SNIFF, return_value="text/plain"):
            with pytest.raises(ValidationError, match="does not match"):
                self.rules.evaluate("photo.png", b"not really a png")

    def test_office_wrapper_types_accepted(self):
        with patch(SNIFF, return_value="application/zip"):
            check = self.rules.evaluate("report.docx", b"PK\x03\x04")
        assert check.category == "document"
        assert check.content_type == "application/octet-stream"

    def test_source_like_text_accepted_as_document(self):
        with patch(SNIFF, return_value="text/x-c"):
            assert self.rules.evaluate("snippet.txt", b"int main() {}").category == "document"

    def test_unrecognised_bytes_accepted(self):
        with patch(SNIFF, return_value="application/octet-stream"):
            check = self.rules.evaluate("clip.mp4", b"\x00" * 32, content_type="video/mp4")
        assert check.category == "video"
        assert check.content_type == "video/mp4"

    def test_sniffer_sees_only_leading_bytes(self):
        with patch(SNIFF, return_value="image/png") as sniff:
            big_rules = build_file_rules(max_file_size=SNIFF_BYTES * 4)
            big_rules.evaluate("photo.png", PNG_BYTES + b"\x00" * (SNIFF_BYTES * 2))
        assert len(sniff.call_args.args[0]) == SNIFF_BYTES
        assert sniff.call_args.kwargs == {"mime": True}

    def test_sniffer_failure_is_reported(self):
        with patch(SNIFF, side_effect=magic.MagicException("cannot load database")):
            with pytest.raises(CodeSafeError, match="Could not verify file type"):
                sniff_content_type(PNG_BYTES)


class TestHelpers:

    def test_human_size(self):
        assert human_size(0) == "0 B"
        assert human_size(512) == "512 B"
        assert human_size(1024) == "1 KB"
        assert human_size(1536) == "1.5 KB"
        assert human_size(52_428_800) == "50 MB"
        assert human_size(3 * 1024 ** 3) == "3 GB"

    def test_normalize_category(self):
        assert normalize_category(" Others ") == "other"
        assert normalize_category(None) == ""

    def test_supported_types_message_lists_every_category(self):
        message = DEFAULT_FILE_RULES.supported_types_message()
        for name in ("DOCUMENT", "IMAGE", "VIDEO", "OTHER"):
            assert f"{name}:" in message
        assert ".pdf" in message

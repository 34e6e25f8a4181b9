"""
Tests for geometry encoding classification.
"""
import struct

import pytest

from travel_time.services.geometry.classifier import (
    SNIFF_RULES,
    GeometryClassifier,
    classify,
    has_columnar_zero_signature,
    is_too_short,
    looks_like_columnar_blob,
    looks_like_standard_wkb,
    sniff_binary,
)
from travel_time.services.geometry.types import DeclaredKind, GeometryEncoding, GeometryInput

from conftest import columnar_point, wkb_point


class TestPredicates:
    """Each sniffing rule in isolation."""

    def test_too_short(self):
        assert is_too_short(b"\x01" * 20)
        assert not is_too_short(b"\x01" * 21)

    def test_zero_signature_needs_32_bytes(self):
        assert has_columnar_zero_signature(bytes(32))
        assert not has_columnar_zero_signature(bytes(31))

    def test_zero_signature_needs_all_zero_header(self):
        data = bytearray(40)
        data[11] = 1
        assert not has_columnar_zero_signature(bytes(data))

    def test_standard_wkb_both_byte_orders(self):
        assert looks_like_standard_wkb(wkb_point(9.19, 45.46, little_endian=True))
        assert looks_like_standard_wkb(wkb_point(9.19, 45.46, little_endian=False))

    def test_standard_wkb_rejects_bad_order_byte(self):
        data = b"\x02" + wkb_point(9.19, 45.46)[1:]
        assert not looks_like_standard_wkb(data)

    def test_standard_wkb_rejects_type_out_of_range(self):
        data = b"\x01" + struct.pack("<I", 8) + struct.pack("<dd", 1.0, 2.0)
        assert not looks_like_standard_wkb(data)

    def test_standard_wkb_masks_srid_flag(self):
        assert looks_like_standard_wkb(wkb_point(9.19, 45.46, srid=4326))

    def test_columnar_blob_near_zero_header(self):
        header = bytes([3, 0, 16, 0, 0, 0, 1, 0, 0, 0, 0, 2])
        data = header + struct.pack("<I", 1) + struct.pack("<dd", 12.45, 43.94)
        assert looks_like_columnar_blob(data)

    def test_columnar_blob_rejects_large_header_byte(self):
        header = bytes([17] + [0] * 11)
        data = header + struct.pack("<I", 1) + struct.pack("<dd", 12.45, 43.94)
        assert not looks_like_columnar_blob(data)

    def test_rule_order(self):
        """Zero-run columnar check precedes the generic WKB check."""
        encodings = [encoding for _, encoding in SNIFF_RULES]
        assert encodings.index(GeometryEncoding.INTERNAL_COLUMNAR_BLOB) < encodings.index(
            GeometryEncoding.STANDARD_WKB
        )


class TestClassify:
    """Tests for classify()."""

    def test_declared_text_is_wkt(self):
        result = classify("POINT(12.45 43.94)", DeclaredKind.TEXT)
        assert result.encoding == GeometryEncoding.WKT
        assert result.data_view == "POINT(12.45 43.94)"

    def test_declared_text_never_sniffed(self):
        """Bytes declared as text stay WKT even if they look like WKB."""
        result = classify(wkb_point(9.19, 45.46), DeclaredKind.TEXT)
        assert result.encoding == GeometryEncoding.WKT

    def test_unknown_string_is_wkt(self):
        assert classify("POINT(1 2)").encoding == GeometryEncoding.WKT

    def test_alias_with_text_storage_is_wkt(self):
        result = classify(GeometryInput("POINT(1 2)", DeclaredKind.NATIVE_GEOMETRY_ALIAS, "GEOMETRY"))
        assert result.encoding == GeometryEncoding.WKT

    def test_wkb_blob_alias_is_standard_wkb(self):
        result = classify(GeometryInput(b"\xff" * 10, DeclaredKind.NATIVE_GEOMETRY_ALIAS, "wkb_blob"))
        assert result.encoding == GeometryEncoding.STANDARD_WKB

    def test_other_alias_is_sniffed(self):
        result = classify(GeometryInput(columnar_point(12.45, 43.94), DeclaredKind.NATIVE_GEOMETRY_ALIAS, "GEOMETRY"))
        assert result.encoding == GeometryEncoding.INTERNAL_COLUMNAR_BLOB

    def test_standard_wkb_point(self):
        result = classify(wkb_point(9.19, 45.46), DeclaredKind.BLOB)
        assert result.encoding == GeometryEncoding.STANDARD_WKB

    def test_columnar_point_never_standard_wkb(self):
        """12 zero bytes, >=32 bytes and type 1 at offset 12 is columnar."""
        data = columnar_point(12.45, 43.94)
        assert classify(data, DeclaredKind.BLOB).encoding == GeometryEncoding.INTERNAL_COLUMNAR_BLOB

    def test_zero_run_wins_over_wkb_header(self):
        """A zero-run blob is columnar even when a later header reads as WKB."""
        data = bytes(32)
        assert has_columnar_zero_signature(data)
        assert sniff_binary(data) == GeometryEncoding.INTERNAL_COLUMNAR_BLOB

    def test_near_zero_header_read_as_wkb(self):
        """Without the full zero run, a valid WKB header takes precedence."""
        data = b"\x01" + bytes([1, 0, 0, 0]) + bytes(7) + bytes([1, 0, 0, 0]) + bytes(16)
        assert looks_like_columnar_blob(data)
        assert sniff_binary(data) == GeometryEncoding.STANDARD_WKB

    def test_short_blob_unrecognized(self):
        assert classify(b"\x01\x01\x00\x00\x00", DeclaredKind.BLOB).encoding == GeometryEncoding.UNRECOGNIZED

    def test_empty_payload_unrecognized(self):
        assert classify(b"").encoding == GeometryEncoding.UNRECOGNIZED

    def test_blob_string_is_sniffed(self):
        assert classify("not a geometry at all, long enough", DeclaredKind.BLOB).encoding == GeometryEncoding.UNRECOGNIZED

    def test_data_view_is_read_only(self):
        payload = bytearray(wkb_point(9.19, 45.46))
        result = classify(payload, DeclaredKind.BLOB)
        assert result.data_view.readonly
        assert bytes(result.data_view) == bytes(payload)

    @pytest.mark.parametrize(
        "payload",
        [
            b"",
            b"\x00",
            bytes(range(256)),
            b"\xff" * 64,
            memoryview(b"\x01\x02\x00\x00\x00" + b"\x00" * 16),
            "",
            "garbage",
        ],
    )
    def test_total(self, payload):
        """Every input maps to one encoding without raising."""
        for kind in DeclaredKind:
            result = classify(payload, kind)
            assert result.encoding in GeometryEncoding
        for kind in ("blob", "text", "no-such-kind", None):
            assert classify(payload, kind).encoding in GeometryEncoding

    def test_plain_string_kind(self):
        assert classify(bytes(40), "blob").encoding == GeometryEncoding.INTERNAL_COLUMNAR_BLOB
        assert classify("POINT(1 2)", "text").encoding == GeometryEncoding.WKT

    def test_non_buffer_payload_unrecognized(self):
        assert classify(12345, DeclaredKind.BLOB).encoding == GeometryEncoding.UNRECOGNIZED

    def test_facade(self):
        assert GeometryClassifier().classify(wkb_point(1.0, 2.0)).encoding == GeometryEncoding.STANDARD_WKB


class TestSniffBinary:
    def test_unrecognized_fallthrough(self):
        assert sniff_binary(b"\x07" * 40) == GeometryEncoding.UNRECOGNIZED

"""
test_runner — trace dump loading and end-to-end export to disk.
"""
import argparse
import gzip
import json

import pytest
from pydantic import ValidationError

from pprof_export.io.loader import build_storage, load_trace_dump
from pprof_export.io.writer import profile_filename
from pprof_export.runner import _parse_sample_type, run_export


def _dump(**overrides) -> dict:
    doc = {
        "schema_version": "0.1",
        "sample_types": [{"name": "samples", "unit": "count"}],
        "mappings": [
            {"id": 0, "build_id": "aa11", "start": 4194304, "end": 4198400,
             "name": "/bin/app"},
            {"id": 1, "build_id": "bb22", "start": 140000000, "end": 140100000,
             "name": "/lib64/ld-linux-x86-64.so.2"},
        ],
        "frames": [
            {"id": 0, "name": "_start", "mapping": 1, "rel_pc": 16},
            {"id": 1, "name": "main", "mapping": 0, "rel_pc": 256,
             "symbol_set_id": 0},
        ],
        "symbols": [
            {"id": 0, "symbol_set_id": 0, "name": "helper",
             "source_file": "app.c", "line_number": 7},
            {"id": 1, "symbol_set_id": 0, "name": "main",
             "source_file": "app.c", "line_number": 20},
        ],
        "callsites": [
            {"id": 0, "depth": 0, "parent_id": None, "frame_id": 0},
            {"id": 1, "depth": 1, "parent_id": 0, "frame_id": 1},
        ],
        "samples": [
            {"callsite_id": 1, "upid": 10},
            {"callsite_id": 1, "upid": 10},
            {"callsite_id": 0, "upid": 20},
        ],
    }
    doc.update(overrides)
    return doc


@pytest.fixture
def dump_path(tmp_path):
    p = tmp_path / "trace_dump.json"
    p.write_text(json.dumps(_dump()), encoding="utf-8")
    return p


class TestLoader:

    def test_load_and_build_storage(self, dump_path):
        dump = load_trace_dump(dump_path)
        storage = build_storage(dump)

        assert storage.mapping_count == 2
        assert storage.frame_count == 2
        assert storage.callsite_frames(1) == [1, 0]
        names = [storage.string_pool.get(s.name) for s in storage.symbols_for_set(0)]
        assert names == ["helper", "main"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_trace_dump(tmp_path / "absent.json")

    def test_old_schema_rejected(self, tmp_path):
        p = tmp_path / "old.json"
        p.write_text(json.dumps(_dump(schema_version="0.0")), encoding="utf-8")
        with pytest.raises(ValueError, match="schema_version 0.0"):
            load_trace_dump(p)

    def test_malformed_row_rejected(self, tmp_path):
        p = tmp_path / "bad.json"
        p.write_text(
            json.dumps(_dump(frames=[{"id": 0, "name": "x"}])), encoding="utf-8",
        )
        with pytest.raises(ValidationError):
            load_trace_dump(p)

    @pytest.mark.parametrize("table, row", [
        ("mappings", {"id": 0, "start": 4096, "end": 8192, "exact_offset": -1}),
        ("mappings", {"id": 0, "start": -4096, "end": 8192}),
        ("frames", {"id": 0, "name": "main", "mapping": 0, "rel_pc": -16}),
    ])
    def test_negative_offsets_rejected(self, tmp_path, table, row):
        p = tmp_path / "negative.json"
        p.write_text(json.dumps(_dump(**{table: [row]})), encoding="utf-8")
        with pytest.raises(ValidationError):
            load_trace_dump(p)

    def test_broken_callsite_chain(self, tmp_path):
        p = tmp_path / "broken.json"
        callsites = [
            {"id": 0, "depth": 0, "parent_id": None, "frame_id": 9},
            {"id": 1, "depth": 1, "parent_id": 40, "frame_id": 1},
        ]
        p.write_text(json.dumps(_dump(callsites=callsites)), encoding="utf-8")
        storage = build_storage(load_trace_dump(p))

        assert storage.callsite_frames(0) == [9]
        assert storage.callsite_frames(1) == [1]
        assert storage.callsite_frames(3) == []
        assert storage.frame(9) is None

    def test_duplicate_row_id(self, tmp_path):
        p = tmp_path / "dup.json"
        mappings = _dump()["mappings"]
        p.write_text(
            json.dumps(_dump(mappings=mappings + [mappings[0]])), encoding="utf-8",
        )
        with pytest.raises(ValueError, match="Duplicate mapping id 0"):
            build_storage(load_trace_dump(p))


class TestRunExport:

    def test_one_profile_per_process(self, dump_path, tmp_path, view):
        out = tmp_path / "out"
        report, profiles = run_export(dump_path, output_dir=out)

        assert set(profiles) == {10, 20}
        assert [p.upid for p in report.profiles] == [10, 20]
        assert all(p.verdict == "ACCEPT" for p in report.profiles)

        first = report.profiles[0]
        assert first.sample_count == 2
        assert first.location_count == 2
        assert first.main_binary == "/bin/app"

    def test_files_written(self, dump_path, tmp_path, view):
        out = tmp_path / "out"
        _, profiles = run_export(dump_path, output_dir=out)

        path = out / profile_filename(10)
        assert path.name == "profile.10.pb.gz"
        data = gzip.decompress(path.read_bytes())
        assert data == profiles[10]

        v = view(data)
        assert v.sample_stack(v.profile.sample[0]) == ["helper", "main", "_start"]

        report_doc = json.loads((out / "export_report.json").read_text())
        assert report_doc["package_name"] == "pprof_export"
        assert report_doc["policy_id"] == "main-binary-v0"
        assert len(report_doc["profiles"]) == 2

    def test_uncompressed_output(self, dump_path, tmp_path):
        out = tmp_path / "raw"
        _, profiles = run_export(dump_path, output_dir=out, compress=False)
        assert (out / "profile.20.pb").read_bytes() == profiles[20]

    def test_no_output_dir_writes_nothing(self, dump_path, tmp_path):
        report, profiles = run_export(dump_path)
        assert all(p.output_path is None for p in report.profiles)
        assert len(profiles) == 2

    def test_samples_without_upid_share_profile(self, tmp_path):
        doc = _dump(samples=[{"callsite_id": 1}, {"callsite_id": 0}])
        p = tmp_path / "dump.json"
        p.write_text(json.dumps(doc), encoding="utf-8")

        report, profiles = run_export(p, output_dir=tmp_path / "out")
        assert list(profiles) == [None]
        assert report.profiles[0].sample_count == 2
        assert (tmp_path / "out" / "profile.all.pb.gz").exists()

    def test_explicit_sample_types_override(self, dump_path, view):
        report, profiles = run_export(
            dump_path, sample_types=[("cpu", "nanoseconds"), ("samples", "count")],
        )
        v = view(profiles[10])
        assert [v.string(st.type) for st in v.profile.sample_type] == ["cpu", "samples"]
        assert list(v.profile.sample[0].value) == [1, 1]
        assert [st.name for st in report.sample_types] == ["cpu", "samples"]

    def test_value_mismatch_rejects_process(self, tmp_path):
        doc = _dump(samples=[
            {"callsite_id": 1, "upid": 1, "values": [1, 2]},
            {"callsite_id": 0, "upid": 2, "values": [1]},
        ])
        p = tmp_path / "dump.json"
        p.write_text(json.dumps(doc), encoding="utf-8")

        report, profiles = run_export(p)
        verdicts = {e.upid: (e.verdict, e.reasons) for e in report.profiles}
        assert verdicts[1] == ("REJECT", ["VALUE_COUNT_MISMATCH"])
        assert verdicts[2] == ("ACCEPT", [])
        assert list(profiles) == [2]

    def test_broken_callsites_still_accepted(self, tmp_path, view):
        doc = _dump(callsites=[
            {"id": 0, "depth": 0, "parent_id": None, "frame_id": 9},
            {"id": 1, "depth": 1, "parent_id": 40, "frame_id": 1},
        ])
        p = tmp_path / "dump.json"
        p.write_text(json.dumps(doc), encoding="utf-8")

        report, profiles = run_export(p)
        assert all(e.verdict == "ACCEPT" for e in report.profiles)
        v = view(profiles[10])
        assert v.sample_stack(v.profile.sample[0]) == ["helper", "main"]


class TestCliParsing:

    def test_sample_type_pair(self):
        assert _parse_sample_type("space:bytes") == ("space", "bytes")

    @pytest.mark.parametrize("text", ["space", ":bytes", "space:"])
    def test_sample_type_invalid(self, text):
        with pytest.raises(argparse.ArgumentTypeError):
            _parse_sample_type(text)

import gzip
import json
import os

import pytest

import result_store
from result_store import (
    BulkWriter, ResultStore, SaveOutcome, StreamWriter,
    load_store, read_entries, save_store, select_writer,
)


SAMPLE = {"2,3|6": True, "1,1|5": False, "0.3333333333333333,3|1": True, "2,10|12": True}


# ============================================================================ #
#                              IN-MEMORY                                       #
# ============================================================================ #

def test_point_operations():
    store = ResultStore()
    assert store.get("x") is None
    assert "x" not in store
    store.set("x", True)
    store.set("y", False)
    assert store.get("x") is True
    assert store.get("y") is False
    assert "y" in store
    assert len(store) == 2


def test_update_overwrites():
    store = ResultStore({"a": True, "b": True})
    store.update(ResultStore({"b": False, "c": False}))
    assert store.to_dict() == {"a": True, "b": False, "c": False}


def test_copy_is_independent():
    store = ResultStore({"a": True})
    clone = store.copy()
    clone.set("b", False)
    assert "b" not in store
    assert clone != store


# ============================================================================ #
#                              LOAD                                            #
# ============================================================================ #

def test_missing_file_gives_empty_store(tmp_path, capsys):
    store = load_store(str(tmp_path / "nope.json.gz"))
    assert len(store) == 0
    assert "failed" not in capsys.readouterr().out


def test_corrupt_file_warns_and_continues(tmp_path, capsys):
    path = tmp_path / "cache.json.gz"
    path.write_bytes(b"this is not gzip")
    store = load_store(str(path))
    assert len(store) == 0
    assert "Cache load failed" in capsys.readouterr().out


@pytest.mark.parametrize("payload", [
    '{"2,3|6": "yes"}',
    '[1, 2, 3]',
    '["2,3|6", true]\n["oops"]\n',
    '["2,3|6", true]\nnot json\n',
    '{"2,3|6": true',
])
def test_malformed_contents_warn(tmp_path, capsys, payload):
    path = tmp_path / "cache.json.gz"
    with gzip.open(path, "wt", encoding="utf-8") as f:
        f.write(payload)
    store = load_store(str(path))
    assert len(store) == 0
    assert "Cache load failed" in capsys.readouterr().out


def test_read_entries_raises_on_bad_records(tmp_path):
    path = tmp_path / "cache.json.gz"
    with gzip.open(path, "wt", encoding="utf-8") as f:
        f.write('[3, true]\n')
    with pytest.raises(ValueError):
        read_entries(str(path))


def test_reads_both_layouts(tmp_path):
    bulk = tmp_path / "bulk.json.gz"
    with gzip.open(bulk, "wt", encoding="utf-8") as f:
        json.dump(SAMPLE, f)

    stream = tmp_path / "stream.jsonl.gz"
    with gzip.open(stream, "wt", encoding="utf-8") as f:
        for key, value in SAMPLE.items():
            f.write(json.dumps([key, value]) + "\n")
        f.write("\n")

    assert load_store(str(bulk)).to_dict() == SAMPLE
    assert load_store(str(stream)).to_dict() == SAMPLE


# ============================================================================ #
#                              SAVE                                            #
# ============================================================================ #

@pytest.mark.parametrize("threshold, streamed", [(1_000, False), (1, True)])
def test_round_trip(tmp_path, threshold, streamed):
    path = str(tmp_path / "cache.json.gz")
    outcome = save_store(path, ResultStore(SAMPLE), stream_threshold=threshold)
    assert outcome.saved
    assert outcome.streamed is streamed
    assert outcome.entries == len(SAMPLE)
    assert load_store(path).to_dict() == SAMPLE
    assert not os.path.exists(path + ".tmp")


def test_stream_layout_is_one_record_per_line(tmp_path):
    path = str(tmp_path / "cache.json.gz")
    save_store(path, ResultStore(SAMPLE), stream_threshold=1)
    with gzip.open(path, "rt", encoding="utf-8") as f:
        lines = [json.loads(line) for line in f if line.strip()]
    assert sorted(map(tuple, lines)) == sorted(SAMPLE.items())


def test_merge_disjoint_saves(tmp_path):
    path = str(tmp_path / "cache.json.gz")
    save_store(path, ResultStore({"a|1": True}))
    save_store(path, ResultStore({"b|1": False}))
    assert load_store(path).to_dict() == {"a|1": True, "b|1": False}


def test_latest_save_wins_on_overlap(tmp_path):
    path = str(tmp_path / "cache.json.gz")
    save_store(path, ResultStore({"a|1": True, "b|1": True}))
    save_store(path, ResultStore({"a|1": False}))
    assert load_store(path).to_dict() == {"a|1": False, "b|1": True}


def test_merge_works_across_writers(tmp_path):
    path = str(tmp_path / "cache.json.gz")
    save_store(path, ResultStore({"a|1": True}), stream_threshold=1)
    outcome = save_store(path, ResultStore({"b|1": True}), stream_threshold=1_000)
    assert not outcome.streamed
    assert load_store(path).to_dict() == {"a|1": True, "b|1": True}


def test_save_over_corrupt_file_keeps_current_entries(tmp_path, capsys):
    path = tmp_path / "cache.json.gz"
    path.write_bytes(b"garbage")
    outcome = save_store(str(path), ResultStore({"a|1": True}))
    assert outcome.saved
    assert "Cache load failed" in capsys.readouterr().out
    assert load_store(str(path)).to_dict() == {"a|1": True}


def test_save_creates_parent_directories(tmp_path):
    path = str(tmp_path / "nested" / "dir" / "cache.json.gz")
    assert save_store(path, ResultStore({"a|1": True})).saved
    assert load_store(path).to_dict() == {"a|1": True}


def test_failed_write_is_reported_not_raised(tmp_path, monkeypatch, capsys):
    path = tmp_path / "cache.json.gz"
    save_store(str(path), ResultStore({"a|1": True}))
    before = path.read_bytes()

    def broken(self, target, entries):
        with open(target, "wb") as f:
            f.write(b"partial")
        raise OSError("disk full")

    monkeypatch.setattr(BulkWriter, "write", broken)
    outcome = save_store(str(path), ResultStore({"b|1": True}))

    assert isinstance(outcome, SaveOutcome)
    assert not outcome.saved
    assert "disk full" in outcome.error
    assert "Cache save failed" in capsys.readouterr().out
    # the previous file is untouched and no temp file is left behind
    assert path.read_bytes() == before
    assert not os.path.exists(str(path) + ".tmp")


def test_select_writer():
    assert isinstance(select_writer(10, 100), BulkWriter)
    assert isinstance(select_writer(100, 100), StreamWriter)
    assert isinstance(select_writer(10), BulkWriter)
    assert result_store.STREAM_THRESHOLD > 10


def test_zero_byte_file_warns(tmp_path, capsys):
    path = tmp_path / "cache.json.gz"
    path.write_bytes(b"")
    store = load_store(str(path))
    assert len(store) == 0
    assert "Cache load failed" in capsys.readouterr().out


def test_empty_store_round_trips_with_any_threshold(tmp_path, capsys):
    path = str(tmp_path / "cache.json.gz")
    outcome = save_store(path, ResultStore(), stream_threshold=1)
    assert outcome.saved
    assert not outcome.streamed
    assert len(load_store(path)) == 0
    assert "Cache load failed" not in capsys.readouterr().out


def test_save_merges_into_the_loaded_dict(tmp_path, monkeypatch):
    loaded = {"a|1": True, "b|1": True}
    written = []

    monkeypatch.setattr(result_store, "_load_entries", lambda path: loaded)
    monkeypatch.setattr(StreamWriter, "write", lambda self, target, entries: written.append(entries))

    path = str(tmp_path / "cache.json.gz")
    with open(path + ".tmp", "wb"):
        pass
    outcome = save_store(path, ResultStore({"b|1": False, "c|1": True}), stream_threshold=1)

    assert outcome.saved and outcome.streamed
    # the writer gets the loaded dict itself, not another full copy
    assert written[0] is loaded
    assert loaded == {"a|1": True, "b|1": False, "c|1": True}

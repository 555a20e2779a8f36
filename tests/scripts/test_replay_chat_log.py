import json

from scripts import replay_chat_log


def _write_log(tmp_path, records):
    path = tmp_path / "chat.jsonl"
    lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def test_replay_ranks_and_reports_json(tmp_path, capsys):
    records = []
    for idx in range(3):
        records.append({"id": f"g{idx}", "ts": idx * 10, "text": "GG"})
    for idx in range(2):
        records.append({"id": f"w{idx}", "ts": 40 + idx, "text": "wp"})
    records.append({"id": "h0", "ts": 50, "text": "hi"})
    # re-delivery of an already counted message
    records.append({"id": "g0", "ts": 60, "text": "gg"})
    records.append("{not json")
    path = _write_log(tmp_path, records)

    exit_code = replay_chat_log.main([str(path), "--threshold", "2", "--max-entries", "2", "--json"])

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert [(e["signature"], e["count"]) for e in payload["entries"]] == [("gg", 3), ("wp", 2)]
    assert payload["entries"][0]["text"] == "GG"
    assert payload["stats"] == {"lines": 8, "accepted": 6, "skipped": 1}


def test_replay_handles_and_window_age(tmp_path, capsys):
    records = [
        {"author": "alice", "ts": 0, "text": "gg"},
        # same author, same text inside the doubled grace window
        {"author": "alice", "ts": 100, "text": "gg"},
        {"author": "bob", "ts": 150, "text": "gg"},
        {"author": "carol", "ts": 5000, "text": "wp"},
        {"author": "dave", "tokens": [{"kind": "text", "content": "wp"}]},
    ]
    path = _write_log(tmp_path, records)

    replay_chat_log.main(
        [str(path), "--threshold", "1", "--window-ms", "1000", "--window-size", "0"]
    )

    out = capsys.readouterr().out.splitlines()
    assert out[0] == "1. wp  (x2)"
    assert out[-1] == "-- 5 lines, 4 accepted, 0 skipped"
    assert not any("gg" in line for line in out)


def test_replay_empty_log(tmp_path, capsys):
    path = _write_log(tmp_path, [])

    replay_chat_log.main([str(path)])

    out = capsys.readouterr().out
    assert "(nothing trending)" in out

import random

import pytest

from helpers import at

from dotask.models import Task, TaskStore
from dotask.persistence import TaskFile, decode, encode, format_due, parse_due


def test_format_due_matches_c_locale_layout():
    assert format_due(at(2026, 10, 5, 14, 3, 0)) == "Mon Oct  5 14:03:00 2026"
    assert format_due(at(2026, 3, 11, 8, 0, 9)) == "Wed Mar 11 08:00:09 2026"


def test_parse_due_accepts_both_day_paddings():
    assert parse_due("Mon Oct  5 14:03:00 2026") == at(2026, 10, 5, 14, 3, 0)
    assert parse_due("Mon Oct 05 14:03:00 2026") == at(2026, 10, 5, 14, 3, 0)


@pytest.mark.parametrize("text", [
    "",
    "Mon Foo  5 14:03:00 2026",
    "Xyz Oct  5 14:03:00 2026",
    "Mon Oct 32 14:03:00 2026",
    "Mon Oct  5 14:03 2026",
    "tomorrow",
])
def test_parse_due_rejects_garbage(text):
    with pytest.raises(ValueError):
        parse_due(text)


def test_round_trip_keeps_every_field_to_the_second():
    tasks = [
        Task(due=at(2026, 3, 12, 10, 0, 59), name="Call mum", desc="about Sunday"),
        Task(due=at(2025, 12, 31, 23, 59, 59), name="Taxes"),
        Task(due=at(2026, 7, 1, 0, 0, 1), name="  spaced name  ", desc="  spaced desc"),
        Task(due=at(2026, 3, 12, 10, 0, 59), name="Same time as mum"),
    ]
    random.Random(4).shuffle(tasks)
    store = TaskStore(tasks)

    result = decode(encode(store).splitlines(keepends=True))

    assert result.warnings == []
    assert [(t.name, t.desc, t.due) for t in result.tasks] == [(t.name, t.desc, t.due) for t in tasks]


def test_encode_layout_and_optional_desc():
    store = TaskStore([
        Task(due=at(2026, 10, 5, 14, 3, 0), name="Pay rent", desc="before noon"),
        Task(due=at(2026, 10, 6, 9, 0, 0), name="Gym"),
    ])
    assert encode(store) == (
        "[Pay rent]\n"
        "  date: Mon Oct  5 14:03:00 2026\n"
        "  desc: before noon\n"
        "\n"
        "[Gym]\n"
        "  date: Tue Oct  6 09:00:00 2026\n"
        "\n"
    )


def test_encode_flattens_line_breaks():
    store = TaskStore([Task(due=at(2026, 10, 6, 9, 0, 0), name="Gym", desc="legs\nand arms")])
    result = decode(encode(store).splitlines())
    assert result.tasks.sorted_view()[0].desc == "legs and arms"


def test_block_missing_date_is_dropped_with_one_diagnostic():
    text = (
        "[First]\n"
        "  date: Wed Mar 11 08:00:00 2026\n"
        "\n"
        "[No date here]\n"
        "  desc: forgot the date\n"
        "\n"
        "[Second]\n"
        "  date: Thu Mar 12 10:00:00 2026\n"
        "  desc: fine\n"
    )
    result = decode(text.splitlines(keepends=True))
    assert [t.name for t in result.tasks] == ["First", "Second"]
    assert len(result.warnings) == 1
    assert "No date here" in result.warnings[0]


def test_decode_never_admits_empty_name_or_zero_due():
    text = (
        "[]\n"
        "  date: Wed Mar 11 08:00:00 2026\n"
        "[Bad date]\n"
        "  date: someday\n"
        "[Good]\n"
        "  date: Wed Mar 11 08:00:00 2026\n"
    )
    result = decode(text.splitlines())
    assert [t.name for t in result.tasks] == ["Good"]
    assert all(t.name and t.due for t in result.tasks)
    assert any("can not load date" in w for w in result.warnings)


def test_unknown_lines_are_reported_and_skipped():
    text = (
        "garbage at the top\n"
        "[Task]\n"
        "  date: Wed Mar 11 08:00:00 2026\n"
        "  colour: blue\n"
        "  desc: still read\n"
    )
    result = decode(text.splitlines())
    assert len(result.tasks) == 1
    assert result.tasks.sorted_view()[0].desc == "still read"
    assert sum("unknown token" in w for w in result.warnings) == 2


def test_missing_closing_bracket_keeps_rest_of_line_as_name():
    result = decode(["[Unclosed name\n", "  date: Wed Mar 11 08:00:00 2026\n"])
    assert [t.name for t in result.tasks] == ["Unclosed name"]
    assert len(result.warnings) == 1


def test_single_space_indent_and_crlf_are_accepted():
    result = decode(["[Task]\r\n", " date: Wed Mar 11 08:00:00 2026\r\n", " desc: x\r\n"])
    task = result.tasks.sorted_view()[0]
    assert task.due == at(2026, 3, 11, 8, 0, 0)
    assert task.desc == "x"


def test_overlong_line_is_truncated_with_warning():
    result = decode(["[" + "x" * 10000 + "]\n", "  date: Wed Mar 11 08:00:00 2026\n"])
    assert any("truncated" in w for w in result.warnings)
    assert len(result.tasks) == 1


def test_decode_warnings_are_logged(caplog):
    with caplog.at_level("WARNING", logger="dotask.persistence"):
        decode(["nonsense\n"])
    assert "unknown token" in caplog.text


def test_task_file_missing_reads_as_empty(tmp_path):
    result = TaskFile(tmp_path / "nope.out").load()
    assert not result.readable
    assert len(result.tasks) == 0


def test_task_file_save_then_load(tmp_path, three_tasks):
    task_file = TaskFile(tmp_path / "nested" / "todo.out")
    assert task_file.save(three_tasks) == 3

    result = task_file.load()
    assert result.readable
    assert [t.name for t in result.tasks] == ["Tomorrow", "Yesterday", "Today"]


def test_invalid_utf8_is_replaced_and_reported(tmp_path):
    todo = tmp_path / "todo.out"
    todo.write_bytes(
        b"[Caf\xe9]\n  date: Wed Mar 11 08:00:00 2026\n\n"
        b"[Tea]\n  date: Thu Mar 12 08:00:00 2026\n  desc: green\n\n"
    )

    result = TaskFile(todo).load()

    assert result.readable
    assert [t.name for t in result.tasks] == ["Caf�", "Tea"]
    assert result.warnings == ["Line 1: not valid UTF-8, bad bytes replaced"]
    assert [t.desc for t in result.tasks] == [None, "green"]


def test_save_replaces_file_without_leaving_temp_files(tmp_path, three_tasks):
    todo = tmp_path / "todo.out"
    todo.write_text("old content that is much longer than nothing\n")
    task_file = TaskFile(todo)

    task_file.save(TaskStore())
    assert todo.read_text() == ""

    task_file.save(three_tasks)
    assert [t.name for t in task_file.load().tasks] == ["Tomorrow", "Yesterday", "Today"]
    assert [p.name for p in tmp_path.iterdir()] == ["todo.out"]


def test_failed_save_keeps_previous_file(tmp_path, three_tasks):
    target = tmp_path / "todo.out"
    target.mkdir()

    with pytest.raises(OSError):
        TaskFile(target).save(three_tasks)

    assert target.is_dir()
    assert [p.name for p in tmp_path.iterdir()] == ["todo.out"]

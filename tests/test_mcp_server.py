from dotask.mcp_server import add_task, clear_tasks, complete_task, list_tasks
from dotask.persistence import TaskFile


def test_add_list_complete(tmp_path):
    assert add_task("Later", "2099-01-02 09:00").startswith("Added 'Later'")
    assert add_task("Sooner", "2099-01-01", description="end of day").startswith("Added")

    listing = list_tasks()
    assert listing.splitlines() == [
        "0: Sooner (Thu Jan  1 23:59:59 2099): end of day",
        "1: Later (Fri Jan  2 09:00:00 2099)",
    ]

    assert complete_task(0) == "Completed 'Sooner'."
    assert [t.name for t in TaskFile(tmp_path / "todo.out").load().tasks] == ["Later"]
    assert complete_task(5).startswith("Error")


def test_windows_and_errors():
    add_task("Old", "2001-01-01 10:00")
    assert "Old" in list_tasks("overdue")
    assert list_tasks("week").startswith("0: Old")
    assert list_tasks(days=0).startswith("0: Old")
    assert list_tasks("someday").startswith("Error")
    assert add_task("Bad", "tomorrow").startswith("Error")
    assert add_task("a]b", "2030-01-01").startswith("Error")
    assert clear_tasks() == "Cleared 1 task(s)."
    assert list_tasks() == "No tasks."

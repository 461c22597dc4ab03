import datetime
import re

import pytest

from rtmpstack.logger import Destination, Level, Logger

ENTRY = re.compile(r"^(\d{4}/\d{2}/\d{2} \d{2}:\d{2}:\d{2}) (\w{3}) (.*)\n$")


def test_file_entry_format(tmp_path):
    path = tmp_path / "out.log"
    with Logger(Level.INFO, {Destination.FILE}, str(path)) as lg:
        lg.log(Level.INFO, "hello %d %s", 5, "world")

    content = path.read_text()
    m = ENTRY.match(content)
    assert m is not None
    assert m.group(2) == "INF"
    assert m.group(3) == "hello 5 world"

    stamp = datetime.datetime.strptime(m.group(1), "%Y/%m/%d %H:%M:%S")
    assert abs((datetime.datetime.now() - stamp).total_seconds()) < 60


@pytest.mark.parametrize(
    "level,label",
    [(Level.DEBUG, "DEB"), (Level.INFO, "INF"), (Level.WARN, "WAR"), (Level.ERROR, "ERR")],
)
def test_level_labels(tmp_path, level, label):
    path = tmp_path / "out.log"
    with Logger(Level.DEBUG, [Destination.FILE], str(path)) as lg:
        lg.log(level, "msg")
    m = ENTRY.match(path.read_text())
    assert m.group(2) == label
    assert m.group(3) == "msg"


def test_entries_below_level_are_dropped(tmp_path):
    path = tmp_path / "out.log"
    with Logger(Level.WARN, [Destination.FILE], str(path)) as lg:
        lg.log(Level.DEBUG, "debug")
        lg.log(Level.INFO, "info")
        lg.log(Level.ERROR, "error")
    lines = path.read_text().splitlines()
    assert len(lines) == 1
    assert lines[0].endswith("ERR error")


def test_file_is_appended(tmp_path):
    path = tmp_path / "out.log"
    for text in ("first", "second"):
        with Logger(Level.INFO, [Destination.FILE], str(path)) as lg:
            lg.log(Level.INFO, text)
    lines = path.read_text().splitlines()
    assert [line.split(" ", 3)[3] for line in lines] == ["first", "second"]


def test_format_without_args_is_literal(tmp_path):
    path = tmp_path / "out.log"
    with Logger(Level.INFO, [Destination.FILE], str(path)) as lg:
        lg.log(Level.INFO, "100%")
    assert ENTRY.match(path.read_text()).group(3) == "100%"


def test_stdout_destination(capsys, tmp_path):
    path = tmp_path / "unused.log"
    with Logger(Level.INFO, [Destination.STDOUT], str(path)) as lg:
        lg.log(Level.WARN, "on %s", "stdout")
    out = capsys.readouterr().out
    m = ENTRY.match(out)
    assert m.group(2) == "WAR"
    assert m.group(3) == "on stdout"
    assert not path.exists()


def test_missing_directory_raises(tmp_path):
    path = tmp_path / "missing" / "out.log"
    with pytest.raises(FileNotFoundError):
        Logger(Level.INFO, [Destination.FILE], str(path))


def test_close_is_idempotent(tmp_path):
    path = tmp_path / "out.log"
    lg = Logger(Level.INFO, [Destination.FILE], str(path))
    lg.log(Level.INFO, "once")
    lg.close()
    lg.close()
    assert path.read_text().endswith("INF once\n")
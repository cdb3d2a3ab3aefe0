from pathlib import Path

import pytest

from os_scheduler.config import load_config
from os_scheduler.models import InvalidInputError
from os_scheduler.workload_io import WorkloadEntry, load_workload


def test_load_json(tmp_path: Path):
    p = tmp_path / "w.json"
    p.write_text('[{"name":"A","arrival_time":0,"burst_time":300,"nice":-5,"policy":"rr","class":"bg"},'
                 '{"name":"B","arrival_time":50,"burst_time":200}]')
    entries = load_workload(p)
    assert isinstance(entries[0], WorkloadEntry)
    assert entries[0].policy == "rr"
    assert entries[0].task_class == "bg"
    assert entries[1].nice == 0
    assert entries[1].task_class == "fg"
    assert entries[1].arrival_time == 50


def test_load_csv(tmp_path: Path):
    p = tmp_path / "w.csv"
    p.write_text("name,arrival_time,burst_time,nice,policy,class,strategy\n"
                 "A,0,100,0,ts,fg,android\n"
                 "B,10,50,,,,\n")
    entries = load_workload(p)
    assert entries[0].name == "A"
    assert entries[0].strategy == "android"
    assert entries[1].policy == "ts"
    assert entries[1].strategy is None


@pytest.mark.parametrize(
    "content",
    [
        '[{"name":"A","burst_time":"lots"}]',
        '[{"burst_time":10}]',
        '[{"name":"A","burst_time":10,"policy":"lottery"}]',
        '{"name":"A"}',
    ],
)
def test_invalid_entries_rejected(tmp_path: Path, content):
    p = tmp_path / "w.json"
    p.write_text(content)
    with pytest.raises(InvalidInputError):
        load_workload(p)


def test_unsupported_suffix(tmp_path: Path):
    p = tmp_path / "w.txt"
    p.write_text("")
    with pytest.raises(InvalidInputError):
        load_workload(p)


def test_load_config_sections(tmp_path: Path):
    p = tmp_path / "config.json"
    p.write_text('{"simulator": {"tick_ms": 5}, "monitor": {"interval": 1.5}, "scoring": {"audio_bonus": 10}}')
    config = load_config(p)
    assert config.simulator.tick_ms == 5
    assert config.simulator.time_slice_ms == 100
    assert config.monitor.interval == 1.5
    assert config.scoring.audio_bonus == 10


def test_load_config_defaults_and_errors(tmp_path: Path):
    assert load_config(None).monitor.idle_eviction_seconds == 300

    p = tmp_path / "bad.json"
    p.write_text('{"monitor": {"interval": 0}}')
    with pytest.raises(ValueError):
        load_config(p)

    p.write_text('{"simulator": {"speed": 2}}')
    with pytest.raises(ValueError):
        load_config(p)

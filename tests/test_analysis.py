"""Tests for the offline event log summary."""

import csv

import pytest

from analysis.parse_event_log import load_event_log, main, summarize, write_durations_csv
from visstim.event_log import EventLog, KEYDOWN, SHOW_FIXATION, SHOW_STIM, START, END, pair_phases

from conftest import FakeClock


@pytest.fixture
def session_log():
    clock = FakeClock(0)
    log = EventLog(clock)
    for trial, stim_s in enumerate((0.5, 0.7)):
        log.record(SHOW_FIXATION, START, trial=trial)
        clock.sleep(0.3)
        log.record(SHOW_FIXATION, END, trial=trial)
        log.record(SHOW_STIM, START, trial=trial, set_index=0, item_index=trial, item_name=f'{trial}.png')
        clock.sleep(stim_s)
        log.record(SHOW_STIM, END, trial=trial, set_index=0, item_index=trial, item_name=f'{trial}.png')
    log.record(KEYDOWN, None, key='space')
    log.record(SHOW_FIXATION, START, trial=2)
    return log


@pytest.mark.parametrize('suffix', ['json', 'csv'])
def test_load_event_log(session_log, tmp_path, suffix):
    path = session_log.save(str(tmp_path / f'events.{suffix}'))
    rows = load_event_log(path)
    assert len(rows) == len(session_log)
    assert rows[2]['item_index'] == 0
    assert rows[8]['edge'] is None
    assert rows[8]['key'] == 'space'


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_event_log(str(tmp_path / 'missing.json'))


def test_summarize_counts_interrupted_phases(session_log):
    summary = summarize(pair_phases(session_log.events))
    assert summary[SHOW_STIM]['count'] == 2
    assert summary[SHOW_STIM]['mean'] == pytest.approx(600.0)
    assert summary[SHOW_STIM]['min'] == pytest.approx(500.0)
    assert summary[SHOW_STIM]['max'] == pytest.approx(700.0)
    assert summary[SHOW_FIXATION]['count'] == 2
    assert summary[SHOW_FIXATION]['interrupted'] == 1
    assert summary[SHOW_STIM]['interrupted'] == 0


def test_write_durations_csv(session_log, tmp_path):
    path = str(tmp_path / 'events.json')
    out_path = write_durations_csv(path, pair_phases(session_log.events))
    assert out_path.endswith('events_durations.csv')
    with open(out_path, encoding='utf-8', newline='') as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 5
    assert rows[-1]['duration_ms'] == ''


def test_main(session_log, tmp_path, capsys):
    path = session_log.save(str(tmp_path / 'events.csv'))
    assert main([path]) == 0
    out = capsys.readouterr().out
    assert 'keydown: 1 events' in out
    assert (tmp_path / 'events_durations.csv').exists()


def test_main_reports_errors(tmp_path):
    assert main([]) == 1
    assert main([str(tmp_path / 'missing.json')]) == 1

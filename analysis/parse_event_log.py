import os
import sys
import csv
import json

import numpy as np

from visstim.event_log import pair_phases


def load_event_log(path: str):
    if not os.path.exists(path):
        raise FileNotFoundError(f'File not found: {path}')
    with open(path, 'r', encoding='utf-8') as f:
        if path.lower().endswith('.csv'):
            rows = []
            for row in csv.DictReader(f):
                rows.append({k: (None if v == '' else v) for k, v in row.items()})
            for row in rows:
                for key in ('trial', 'set_index', 'item_index'):
                    if row.get(key) is not None:
                        row[key] = int(row[key])
            return rows
        return json.load(f)


def write_durations_csv(path: str, paired: list):
    out_path = os.path.splitext(path)[0] + '_durations.csv'
    fieldnames = ['phase', 'trial', 'start', 'end', 'duration_ms']
    with open(out_path, 'w', encoding='utf-8', newline='') as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for row in paired:
            writer.writerow({k: '' if row.get(k) is None else row.get(k) for k in fieldnames})
    return out_path


def summarize(paired: list):
    """Per-phase count and duration statistics (ms); interrupted phases are counted separately."""
    durations = {}
    dangling = {}
    for row in paired:
        if row['duration_ms'] is None:
            dangling[row['phase']] = dangling.get(row['phase'], 0) + 1
        else:
            durations.setdefault(row['phase'], []).append(row['duration_ms'])

    summary = {}
    for phase in sorted(set(durations) | set(dangling)):
        values = np.asarray(durations.get(phase, []), dtype=float)
        summary[phase] = {
            'count': int(values.size),
            'mean': float(values.mean()) if values.size else None,
            'std': float(values.std()) if values.size else None,
            'min': float(values.min()) if values.size else None,
            'max': float(values.max()) if values.size else None,
            'interrupted': dangling.get(phase, 0),
        }
    return summary


def print_brief_summary(summary: dict, n_keys: int = 0):
    print('Summary:')
    for phase, s in summary.items():
        if s['count']:
            print(f'  {phase}: {s["count"]} phases, mean {s["mean"]:.1f} ms, std {s["std"]:.1f} ms, '
                  f'min {s["min"]:.1f} ms, max {s["max"]:.1f} ms')
        if s['interrupted']:
            print(f'  {phase}: {s["interrupted"]} interrupted')
    if n_keys:
        print(f'  keydown: {n_keys} events')


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) < 1:
        print('Usage: python -m analysis.parse_event_log <EVENT_LOG.json|EVENT_LOG.csv>')
        return 1

    path = argv[0]
    try:
        rows = load_event_log(path)
    except (OSError, ValueError) as e:
        print(f'Failed to load event log: {e}')
        return 1

    paired = pair_phases(rows)
    out_path = write_durations_csv(path, paired)
    print_brief_summary(summarize(paired), n_keys=sum(1 for r in rows if r.get('phase') == 'keydown'))
    print(f'Wrote phase durations CSV: {out_path}')
    return 0


if __name__ == '__main__':
    sys.exit(main())

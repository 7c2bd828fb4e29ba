import csv
import os
import sqlite3
from datetime import date

import pytest
import yaml
from click.testing import CliRunner

import bill_tracker.database
from bill_tracker.cli import main as cli
from bill_tracker.core.models import TransactionInstance
from bill_tracker.database import add_instance, fetch_definitions, fetch_instances


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    monkeypatch.delenv("BILLCYCLE_DB", raising=False)
    monkeypatch.delenv("BILLCYCLE_LOG_LEVEL", raising=False)


def write_config(tmp_path, data_dir):
    cfg = {
        'db_path': str(tmp_path / 'bills.db'),
        'output_dir': str(data_dir),
        'output_modules': {
            'csv': 'bill_tracker.outputs.csv_output.CSVOutput',
        },
    }
    path = tmp_path / 'config.yaml'
    with open(path, 'w') as f:
        yaml.safe_dump(cfg, f)
    return path


def write_definitions(path):
    path.write_text(
        """\
- id: rent
  payee_name: Landlord
  amount: 1200
  frequency: monthly
  start_date: 2024-01-01
- id: salary
  payee_name: Employer
  amount: 3000
  transaction_type: income
  frequency_unit: week
  interval: 2
  start_date: 2024-01-05
  end_date: 2024-02-10
"""
    )


def _invoke(tmp_path, *args):
    cfg_path = write_config(tmp_path, tmp_path / 'data')
    runner = CliRunner()
    return runner.invoke(cli, ['--config', str(cfg_path), *args])


def test_cli_add_and_list(tmp_path):
    res = _invoke(
        tmp_path, 'add',
        '--id', 'gym',
        '--payee', 'Gym',
        '--amount', '40',
        '--frequency', 'month',
        '--start', '2024-01-31',
    )
    assert res.exit_code == 0, res.output
    assert 'Every month' in res.output
    assert 'next due 2024-01-31' in res.output

    res = _invoke(tmp_path, 'list')
    assert res.exit_code == 0, res.output
    assert 'gym  Gym  expense 40.00  Every month  next 2024-01-31' in res.output


def test_cli_add_rejects_end_before_start(tmp_path):
    res = _invoke(
        tmp_path, 'add',
        '--payee', 'Gym', '--amount', '40',
        '--start', '2024-02-01', '--end', '2024-01-01',
    )
    assert res.exit_code != 0
    assert 'end_date' in res.output


def test_cli_add_rejects_zero_interval(tmp_path):
    res = _invoke(
        tmp_path, 'add',
        '--payee', 'Gym', '--amount', '40',
        '--start', '2024-02-01', '--interval', '0',
    )
    assert res.exit_code != 0


def test_cli_import_and_materialize(tmp_path):
    defs = tmp_path / 'recurring.yaml'
    write_definitions(defs)

    res = _invoke(tmp_path, 'import', str(defs))
    assert res.exit_code == 0, res.output
    assert 'Imported 2 recurring definition(s)' in res.output

    res = _invoke(tmp_path, 'import', str(defs))
    assert res.exit_code == 0, res.output
    assert 'Skipping duplicate definition id: rent' in res.output
    assert 'Imported 0 recurring definition(s)' in res.output

    res = _invoke(tmp_path, 'materialize', '--today', '2024-03-15')
    assert res.exit_code == 0, res.output
    # rent: Jan 1, Feb 1, Mar 1; salary: Jan 5, Jan 19, Feb 2
    assert 'Generated 6 transaction(s) as of 2024-03-15.' in res.output

    res = _invoke(tmp_path, 'materialize', '--today', '2024-03-15')
    assert res.exit_code == 0, res.output
    assert 'Generated 0 transaction(s)' in res.output

    db_path = str(tmp_path / 'bills.db')
    by_id = {d.id: d for d in fetch_definitions(db_path)}
    assert by_id['rent'].next_due_date.isoformat() == '2024-04-01'
    assert by_id['salary'].next_due_date.isoformat() == '2024-02-16'


def test_cli_import_reports_bad_file(tmp_path):
    defs = tmp_path / 'recurring.yaml'
    defs.write_text("- payee_name: Landlord\n  frequency: hourly\n  start_date: 2024-01-01\n")
    res = _invoke(tmp_path, 'import', str(defs))
    assert res.exit_code != 0
    assert 'Unsupported frequency' in res.output


def test_cli_materialize_reports_bad_definition(tmp_path):
    defs = tmp_path / 'recurring.yaml'
    write_definitions(defs)
    _invoke(tmp_path, 'import', str(defs))
    conn = sqlite3.connect(str(tmp_path / 'bills.db'))
    try:
        conn.execute(
            "UPDATE recurring_definitions SET frequency_unit = 'fortnight' WHERE id = 'salary'"
        )
        conn.commit()
    finally:
        conn.close()

    res = _invoke(tmp_path, 'materialize', '--today', '2024-01-31')
    assert res.exit_code == 0, res.output
    assert 'Skipped salary' in res.output
    assert 'Generated 1 transaction(s)' in res.output


def test_cli_materialize_reports_stalled_definition(tmp_path):
    cfg_path = tmp_path / 'config.yaml'
    cfg_path.write_text(
        f"db_path: {tmp_path / 'bills.db'}\nmax_iterations: 5\n"
    )
    runner = CliRunner()
    res = runner.invoke(cli, [
        '--config', str(cfg_path), 'add', '--id', 'coffee', '--payee', 'Cafe',
        '--amount', '3.5', '--frequency', 'day', '--start', '2024-01-01',
    ])
    assert res.exit_code == 0, res.output

    res = runner.invoke(cli, ['--config', str(cfg_path), 'materialize', '--today', '2024-01-31'])
    assert res.exit_code == 0, res.output
    assert 'coffee has more occurrences due' in res.output
    assert 'Generated 5 transaction(s)' in res.output


def test_cli_materialize_exports_csv(tmp_path):
    defs = tmp_path / 'recurring.yaml'
    write_definitions(defs)
    _invoke(tmp_path, 'import', str(defs))

    res = _invoke(tmp_path, 'materialize', '--today', '2024-01-31', '--export', 'csv')
    assert res.exit_code == 0, res.output

    out_csv = tmp_path / 'data' / 'Instances2024.csv'
    assert out_csv.exists()
    with open(out_csv, newline='') as f:
        rows = list(csv.DictReader(f))
    assert [r['due_date'] for r in rows] == ['2024-01-01', '2024-01-05', '2024-01-19']
    assert rows[0]['amount'] == '1200.00'
    assert rows[1]['transaction_type'] == 'income'
    assert {r['is_paid'] for r in rows} == {'false'}


def test_cli_instances_and_delete(tmp_path):
    defs = tmp_path / 'recurring.yaml'
    write_definitions(defs)
    _invoke(tmp_path, 'import', str(defs))
    _invoke(tmp_path, 'materialize', '--today', '2024-02-15')

    res = _invoke(tmp_path, 'instances', '--definition', 'rent')
    assert res.exit_code == 0, res.output
    assert '2024-01-01  Landlord  expense 1200.00  open' in res.output
    assert 'Employer' not in res.output

    res = _invoke(tmp_path, 'instances', '--month', '2024-02')
    assert res.exit_code == 0, res.output
    assert '2024-01-01' not in res.output
    assert '2024-02-01  Landlord' in res.output
    assert '2024-02-02  Employer' in res.output

    res = _invoke(tmp_path, 'instances', '--month', 'February')
    assert res.exit_code != 0

    res = _invoke(tmp_path, 'delete', 'rent')
    assert res.exit_code == 0, res.output
    res = _invoke(tmp_path, 'delete', 'rent')
    assert res.exit_code != 0
    assert 'No recurring definition with id rent' in res.output

    assert len(fetch_instances(str(tmp_path / 'bills.db'), recurring_definition_id='rent')) == 2


def test_cli_db_option_overrides_config(tmp_path):
    other_db = tmp_path / 'other.db'
    res = _invoke(
        tmp_path, '--db', str(other_db), 'add', '--id', 'gym',
        '--payee', 'Gym', '--amount', '40', '--start', '2024-01-01',
    )
    assert res.exit_code == 0, res.output
    assert [d.id for d in fetch_definitions(str(other_db))] == ['gym']
    assert fetch_definitions(str(tmp_path / 'bills.db')) == []


def test_cli_env_file(tmp_path):
    env_file = tmp_path / '.env'
    env_db = tmp_path / 'env.db'
    env_file.write_text(f"BILLCYCLE_DB={env_db}\n")
    runner = CliRunner()
    try:
        res = runner.invoke(cli, [
            '--config', str(tmp_path / 'missing.yaml'), '--env-file', str(env_file),
            'add', '--payee', 'Gym', '--amount', '40', '--start', '2024-01-01',
        ])
    finally:
        os.environ.pop('BILLCYCLE_DB', None)
    assert res.exit_code == 0, res.output
    assert len(fetch_definitions(str(env_db))) == 1


def test_cli_edit_cadence_mid_stream(tmp_path):
    defs = tmp_path / 'recurring.yaml'
    write_definitions(defs)
    _invoke(tmp_path, 'import', str(defs))
    res = _invoke(tmp_path, 'materialize', '--today', '2024-02-10')
    assert 'Generated 5 transaction(s)' in res.output

    res = _invoke(tmp_path, 'edit', 'rent', '--frequency', 'week', '--reset')
    assert res.exit_code == 0, res.output
    assert 'Updated rent: Landlord (Every week, next due 2024-01-01)' in res.output

    res = _invoke(tmp_path, 'materialize', '--today', '2024-02-10')
    assert res.exit_code == 0, res.output
    # Jan 1 already exists; Jan 8, 15, 22, 29 and Feb 5 are new
    assert 'Generated 5 transaction(s)' in res.output

    db_path = str(tmp_path / 'bills.db')
    rent_dates = [tx.due_date for tx in fetch_instances(db_path, recurring_definition_id='rent')]
    assert rent_dates.count(date(2024, 1, 1)) == 1
    assert len(rent_dates) == len(set(rent_dates)) == 7
    assert date(2024, 2, 1) in rent_dates
    by_id = {d.id: d for d in fetch_definitions(db_path)}
    assert by_id['rent'].next_due_date == date(2024, 2, 12)

    res = _invoke(tmp_path, 'materialize', '--today', '2024-02-10')
    assert 'Generated 0 transaction(s)' in res.output


def test_cli_edit_errors(tmp_path):
    defs = tmp_path / 'recurring.yaml'
    write_definitions(defs)
    _invoke(tmp_path, 'import', str(defs))

    res = _invoke(tmp_path, 'edit', 'missing', '--amount', '5')
    assert res.exit_code != 0
    assert 'No recurring definition with id missing' in res.output

    res = _invoke(tmp_path, 'edit', 'rent')
    assert res.exit_code != 0
    assert 'Nothing to change' in res.output

    res = _invoke(tmp_path, 'edit', 'rent', '--end', '2023-12-01')
    assert res.exit_code != 0
    assert 'end_date' in res.output

    res = _invoke(tmp_path, 'edit', 'rent', '--interval', '0')
    assert res.exit_code != 0

    by_id = {d.id: d for d in fetch_definitions(str(tmp_path / 'bills.db'))}
    assert by_id['rent'].end_date is None
    assert by_id['rent'].interval == 1


def test_cli_export_skips_instances_already_stored(tmp_path, monkeypatch):
    defs = tmp_path / 'recurring.yaml'
    write_definitions(defs)
    _invoke(tmp_path, 'import', str(defs))
    db_path = str(tmp_path / 'bills.db')
    add_instance(db_path, TransactionInstance(
        id='stored-by-other-pass',
        payee_name='Landlord',
        amount=1200.0,
        transaction_type='expense',
        due_date=date(2024, 1, 1),
        recurring_definition_id='rent',
    ))
    # the pass does not see the stored instance and builds it again
    monkeypatch.setattr(bill_tracker.database, 'fetch_instances', lambda *a, **k: [])

    res = _invoke(tmp_path, 'materialize', '--today', '2024-01-31', '--export', 'csv')
    assert res.exit_code == 0, res.output
    assert 'Generated 2 transaction(s)' in res.output

    with open(tmp_path / 'data' / 'Instances2024.csv', newline='') as f:
        rows = list(csv.DictReader(f))
    assert [r['due_date'] for r in rows] == ['2024-01-05', '2024-01-19']


def test_cli_rejects_unknown_log_level(tmp_path, monkeypatch):
    monkeypatch.setenv('BILLCYCLE_LOG_LEVEL', 'loud')
    res = _invoke(tmp_path, 'list')
    assert res.exit_code != 0
    assert "Unknown log_level 'loud'" in res.output
    assert res.exception is None or isinstance(res.exception, SystemExit)

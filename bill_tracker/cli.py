# bill_tracker/cli.py
import logging
import sqlite3
from datetime import date

import click
from dotenv import load_dotenv

from bill_tracker.config import load_config
from bill_tracker.database import (
    add_definition,
    delete_definition,
    fetch_definitions,
    fetch_instances,
    get_definition,
    run_materialization,
    update_definition,
)
from bill_tracker.definitions import load_definitions, parse_definition
from bill_tracker.outputs import get_output
from bill_tracker.utils import describe_cadence, filter_instances_by_month

DATE = click.DateTime(formats=['%Y-%m-%d'])


@click.group()
@click.option(
    '--config', 'config_path',
    default='config.yaml',
    type=click.Path(dir_okay=False),
    help='Path to config.yaml (defaults are used if it does not exist)'
)
@click.option(
    '--db', 'db_path',
    default=None,
    type=click.Path(dir_okay=False),
    help='SQLite database file holding definitions and instances'
)
@click.option(
    '--env-file', 'env_file',
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help='Optional .env file with BILLCYCLE_* overrides'
)
@click.pass_context
def main(ctx, config_path, env_file, db_path):
    """
    Track recurring bills and income and generate the transactions
    that are due.
    """
    if env_file:
        load_dotenv(env_file)

    try:
        cfg = load_config(config_path)
    except ValueError as e:
        raise click.ClickException(str(e))
    logging.basicConfig(level=str(cfg['log_level']).upper())

    ctx.obj = {
        'config': cfg,
        'db_path': db_path or cfg['db_path'],
    }


@main.command()
@click.option('--payee', 'payee_name', required=True, help='Payee or payer name')
@click.option('--amount', required=True, type=float)
@click.option(
    '--type', 'transaction_type',
    default='expense',
    type=click.Choice(['expense', 'income']),
)
@click.option('--category', 'category_ref', default=None, help='Category id or name')
@click.option(
    '--frequency', 'frequency_unit',
    default='month',
    type=click.Choice(['day', 'week', 'month', 'year']),
)
@click.option('--interval', default=1, type=click.IntRange(min=1))
@click.option('--start', 'start_date', required=True, type=DATE)
@click.option('--end', 'end_date', default=None, type=DATE)
@click.option('--id', 'definition_id', default=None, help='Explicit definition id')
@click.pass_obj
def add(obj, payee_name, amount, transaction_type, category_ref,
        frequency_unit, interval, start_date, end_date, definition_id):
    """Create a recurring definition."""
    try:
        definition = parse_definition({
            'id': definition_id,
            'payee_name': payee_name,
            'amount': amount,
            'transaction_type': transaction_type,
            'category_ref': category_ref,
            'frequency_unit': frequency_unit,
            'interval': interval,
            'start_date': start_date.date(),
            'end_date': end_date.date() if end_date else None,
        })
        definition = add_definition(obj['db_path'], definition)
    except (ValueError, sqlite3.IntegrityError) as e:
        raise click.ClickException(str(e))
    click.echo(f"Added {definition.id}: {definition.payee_name} "
               f"({describe_cadence(definition.frequency_unit, definition.interval)}, "
               f"next due {definition.next_due_date.isoformat()})")


@main.command('import')
@click.argument('definitions_file', type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
def import_definitions(obj, definitions_file):
    """Add every recurring definition listed in a YAML file."""
    try:
        definitions = load_definitions(definitions_file)
    except ValueError as e:
        raise click.ClickException(f"Error loading recurring definitions: {e}")

    added = 0
    for definition in definitions:
        try:
            add_definition(obj['db_path'], definition)
        except sqlite3.IntegrityError:
            click.echo(f"⚠️  Skipping duplicate definition id: {definition.id}", err=True)
            continue
        added += 1
    click.echo(f"Imported {added} recurring definition(s) into {obj['db_path']}.")


@main.command('list')
@click.pass_obj
def list_definitions(obj):
    """Show stored recurring definitions."""
    definitions = fetch_definitions(obj['db_path'])
    if not definitions:
        click.echo("No recurring definitions.")
        return
    for d in definitions:
        end = f" until {d.end_date.isoformat()}" if d.end_date else ""
        click.echo(
            f"{d.id}  {d.payee_name}  {d.transaction_type} {d.amount:.2f}  "
            f"{describe_cadence(d.frequency_unit, d.interval)}{end}  "
            f"next {d.next_due_date.isoformat()}"
        )


@main.command()
@click.argument('definition_id')
@click.pass_obj
def delete(obj, definition_id):
    """Delete a recurring definition, keeping the instances it generated."""
    if not delete_definition(obj['db_path'], definition_id):
        raise click.ClickException(f"No recurring definition with id {definition_id}")
    click.echo(f"Deleted {definition_id}.")


@main.command()
@click.argument('definition_id')
@click.option('--payee', 'payee_name', default=None)
@click.option('--amount', default=None, type=float)
@click.option('--type', 'transaction_type', default=None,
              type=click.Choice(['expense', 'income']))
@click.option('--category', 'category_ref', default=None)
@click.option('--frequency', 'frequency_unit', default=None,
              type=click.Choice(['day', 'week', 'month', 'year']))
@click.option('--interval', default=None, type=click.IntRange(min=1))
@click.option('--start', 'start_date', default=None, type=DATE)
@click.option('--end', 'end_date', default=None, type=DATE)
@click.option(
    '--reset', is_flag=True, default=False,
    help='Restart the schedule from the start date; dates that already '
         'have a transaction are not generated again'
)
@click.pass_obj
def edit(obj, definition_id, payee_name, amount, transaction_type, category_ref,
         frequency_unit, interval, start_date, end_date, reset):
    """Change fields of a recurring definition."""
    changes = {
        'payee_name': payee_name,
        'amount': amount,
        'transaction_type': transaction_type,
        'category_ref': category_ref,
        'frequency_unit': frequency_unit,
        'interval': interval,
        'start_date': start_date.date() if start_date else None,
        'end_date': end_date.date() if end_date else None,
    }
    changes = {k: v for k, v in changes.items() if v is not None}
    if reset:
        current = get_definition(obj['db_path'], definition_id)
        if current is not None:
            changes['next_due_date'] = changes.get('start_date', current.start_date)
    if not changes:
        raise click.UsageError("Nothing to change.")

    try:
        d = update_definition(obj['db_path'], definition_id, **changes)
    except KeyError:
        raise click.ClickException(f"No recurring definition with id {definition_id}")
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"Updated {d.id}: {d.payee_name} "
               f"({describe_cadence(d.frequency_unit, d.interval)}, "
               f"next due {d.next_due_date.isoformat()})")


@main.command()
@click.option(
    '--today', 'today',
    default=None,
    type=DATE,
    help='Reference date (YYYY-MM-DD); defaults to the current date'
)
@click.option(
    '--export', 'export_format',
    default=None,
    type=click.Choice(['csv']),
    help='Also write the created instances to an output'
)
@click.pass_obj
def materialize(obj, today, export_format):
    """Generate every recurring instance due up to today."""
    cfg = obj['config']
    as_of = today.date() if today else date.today()

    result, inserted = run_materialization(
        obj['db_path'], as_of, max_iterations=cfg['max_iterations']
    )

    for err in result.errors:
        click.echo(f"⚠️  Skipped {err.definition_id}: {err.reason}", err=True)
    for definition_id in result.stalled:
        click.echo(
            f"⚠️  {definition_id} has more occurrences due; run again to continue.",
            err=True,
        )

    if export_format and inserted:
        outputter = get_output(export_format, cfg)
        outputter.append(inserted)

    click.echo(f"Generated {len(inserted)} transaction(s) as of {as_of.isoformat()}.")


@main.command()
@click.option('--definition', 'definition_id', default=None,
              help='Only show instances of this definition')
@click.option('--from', 'start_date', default=None, type=DATE)
@click.option('--to', 'end_date', default=None, type=DATE)
@click.option('--month', 'month_str', default=None, help='Only show YYYY-MM')
@click.pass_obj
def instances(obj, definition_id, start_date, end_date, month_str):
    """List stored transaction instances."""
    txs = fetch_instances(
        obj['db_path'],
        recurring_definition_id=definition_id,
        start_date=start_date.date() if start_date else None,
        end_date=end_date.date() if end_date else None,
    )
    if month_str:
        try:
            txs = filter_instances_by_month(txs, month_str)
        except ValueError:
            raise click.BadParameter(f"expected YYYY-MM, got {month_str}", param_hint='--month')
    if not txs:
        click.echo("No transactions.")
        return
    for tx in txs:
        status = 'paid' if tx.is_paid else 'open'
        click.echo(
            f"{tx.due_date.isoformat()}  {tx.payee_name}  "
            f"{tx.transaction_type} {tx.amount:.2f}  {status}"
        )

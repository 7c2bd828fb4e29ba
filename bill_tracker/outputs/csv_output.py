# bill_tracker/outputs/csv_output.py

import os
import csv
from decimal import Decimal
from bill_tracker.outputs.base import BaseOutput

FIELDS = ['id', 'due_date', 'payee_name', 'transaction_type', 'category_ref',
          'amount', 'is_paid', 'recurring_definition_id']


class CSVOutput(BaseOutput):
    """
    Writes generated instances to a master CSV file named Instances<Year>.csv,
    merged with rows already in the file and sorted by due date.
    Rows are keyed by instance id.
    """
    def __init__(self, config):
        self.config      = config
        self.output_dir  = config.get('output_dir', 'data')
        os.makedirs(self.output_dir, exist_ok=True)

    def _path_for(self, year):
        return os.path.join(self.output_dir, f"Instances{year}.csv")

    def append(self, instances):
        if not instances:
            print("No instances to write.")
            return []

        by_year = {}
        for tx in instances:
            by_year.setdefault(tx.due_date.year, []).append(tx)

        written = []
        for year, txs in sorted(by_year.items()):
            out_path = self._path_for(year)
            records = {}
            if os.path.exists(out_path):
                with open(out_path, newline='') as f:
                    for row in csv.DictReader(f):
                        records[row['id']] = row

            for tx in txs:
                records[tx.id] = {
                    'id':                      tx.id,
                    'due_date':                tx.due_date.isoformat(),
                    'payee_name':              tx.payee_name.strip(),
                    'transaction_type':        tx.transaction_type,
                    'category_ref':            tx.category_ref or '',
                    'amount':                  f"{Decimal(str(tx.amount)):.2f}",
                    'is_paid':                 'true' if tx.is_paid else 'false',
                    'recurring_definition_id': tx.recurring_definition_id or '',
                }

            sorted_records = sorted(
                records.values(), key=lambda r: (r['due_date'], r['payee_name'])
            )
            with open(out_path, 'w', newline='') as f:
                writer = csv.DictWriter(f, fieldnames=FIELDS)
                writer.writeheader()
                writer.writerows(sorted_records)

            print(f"Written {len(sorted_records)} instances to {out_path}")
            written.append(out_path)
        return written

# bill_tracker/utils.py

_UNIT_NAMES = {
    "day": ("day", "days"),
    "week": ("week", "weeks"),
    "month": ("month", "months"),
    "year": ("year", "years"),
}


def describe_cadence(frequency_unit, interval):
    """
    Human readable cadence, e.g. 'Every month' or 'Every 2 weeks'.
    """
    singular, plural = _UNIT_NAMES.get(frequency_unit, (frequency_unit, frequency_unit))
    if interval == 1:
        return f"Every {singular}"
    return f"Every {interval} {plural}"


def filter_instances_by_month(instances, month_str):
    """
    Return only those instances whose due date falls in the given YYYY-MM.
    """
    year, month = map(int, month_str.split('-'))
    return [tx for tx in instances if tx.due_date.year == year and tx.due_date.month == month]

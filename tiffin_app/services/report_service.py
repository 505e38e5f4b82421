import logging
from pathlib import Path

import pandas as pd

logger = logging.getLogger(__name__)

ORDER_COLUMNS = ['date_id', 'slot', 'user_id', 'phone_number', 'main_item', 'quantity',
                 'extras', 'total_amount', 'status', 'is_trial', 'created_at']
KHATA_COLUMNS = ['created_at', 'kind', 'label', 'status', 'debit', 'credit', 'counted', 'running_balance']


def orders_frame(orders):
    rows = [
        {
            'date_id': o.date_id,
            'slot': o.slot,
            'user_id': o.user_id,
            'phone_number': o.phone_number,
            'main_item': o.main_item,
            'quantity': o.quantity,
            'extras': ', '.join(f'{c.name} x{c.quantity}' for c in o.components_snapshot if c.quantity > 0),
            'total_amount': o.total_amount,
            'status': o.status.value,
            'is_trial': o.is_trial,
            'created_at': o.created_at,
        }
        for o in orders
    ]
    df = pd.DataFrame(rows, columns=ORDER_COLUMNS)
    df['created_at'] = pd.to_datetime(df['created_at'], utc=True)
    return df


def khata_frame(summary):
    """Statement of a KhataSummary, oldest first, with a running balance column."""
    rows = []
    for entry in reversed(summary.history):
        is_order = entry.kind == 'order'
        rows.append({
            'created_at': entry.created_at,
            'kind': entry.kind,
            'label': entry.label,
            'status': entry.status,
            'debit': entry.amount if is_order else 0.0,
            'credit': entry.amount if not is_order and entry.counted else 0.0,
            'counted': entry.counted,
        })
    df = pd.DataFrame(rows, columns=KHATA_COLUMNS[:-1])
    df['created_at'] = pd.to_datetime(df['created_at'], utc=True)
    df['running_balance'] = (df['debit'] - df['credit']).cumsum()
    return df


def export_frame(df, path):
    path = Path(path)
    # Excel cannot store tz-aware datetimes
    out = df.copy()
    for col in out.select_dtypes(include=['datetimetz']).columns:
        out[col] = out[col].dt.tz_localize(None)
    if path.suffix == '.xlsx':
        out.to_excel(path, index=False, engine='openpyxl')
    elif path.suffix == '.csv':
        out.to_csv(path, index=False)
    else:
        raise ValueError(f'Unsupported export format: {path.suffix}')
    logger.info('Exported %d rows to %s', len(out), path)
    return path

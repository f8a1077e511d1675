#!/usr/bin/env python3
import sys
import os
import time
from datetime import datetime, date, timezone

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from reconciliation_engine import ReconciliationEngine
from models import Invoice, MatcherConfig, Payment

RUN_AT = datetime(2026, 10, 1, tzinfo=timezone.utc)

# Generate test data: 10,000 invoices, 9,500 paid by reference, 500 orphaned payments
invoices = [Invoice(
    id=f'inv_{i}',
    tenant_id='tenant_1',
    customer_id=f'cust_{i % 2000}',
    amount=150000,
    due_date=date(2026, 9, 1 + i % 28),
    reference=f'ref{i}',
) for i in range(10000)]
payments = [Payment(
    id=f'pay_{i}',
    tenant_id='tenant_1',
    amount=150000,
    currency='KES',
    reference=f'MPESA-REF{i}' if i < 9500 else None,
    customer_id=f'cust_{i % 2000}' if i < 9500 else None,
    received_at=datetime(2026, 9, 20, tzinfo=timezone.utc),
) for i in range(10000)]

# Performance test
start_time = time.time()
engine = ReconciliationEngine(MatcherConfig(clock=lambda: RUN_AT))
result = engine.reconcile(payments, invoices)
duration = time.time() - start_time

print(f'Reconciled 10,000 payments against 10,000 invoices in {duration:.2f} seconds')
assert duration < 30, f'Performance test failed: {duration:.2f}s > 30s'
assert len(result.matches) == 9500, f'Expected 9500 matches, got {len(result.matches)}'
assert len(result.unmatched_payments) == 500, f'Expected 500 orphans, got {len(result.unmatched_payments)}'
print('Performance test passed')

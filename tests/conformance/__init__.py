"""
Conformance Test Suite

Properties every state of the note system must satisfy, checked with
hypothesis over generated amounts and operation sequences:
1. test_conservation.py - double-entry balances and reserve backing
2. test_atomicity.py - failed operations leave no trace
3. test_determinism.py - identical inputs produce identical ledgers
4. test_amounts.py - rounding and bounds of the pure amount calculations
5. test_fee_curves.py - deviation ratio and fee curve shapes
6. test_queue.py - redemption queue ordering
"""

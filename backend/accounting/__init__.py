# accounting/__init__.py
"""
Accounting app - Double-entry ledger for the school.

This app provides:
- Currency / Account / PostingJournal: chart of accounts and currencies
- JournalEntry / JournalLine: append-only double-entry postings
- journal_store: validation and posting of balanced entries
- commands: manual adjustments and journal entry reversal

Commands handle all mutations; balances are maintained by projections.
"""

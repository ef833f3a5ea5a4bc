"""
Storage layer for EduVoice.

SQLite-backed stores for accounts, transactions, vouchers, exam sessions
and provider usage events.
"""

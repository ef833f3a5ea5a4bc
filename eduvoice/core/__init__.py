"""
Core modules for EduVoice.

This package contains provider fallback, error classification, the token
ledger, output validation, vouchers and the exam state machine.
"""

"""
Timus Notifier - Automated submission announcer.

This package provides functionality to:
- Fetch the Timus Online Judge status page for one author
- Parse the submissions table into attempt records
- Compare attempts with the persisted seen-set to detect new entries
- Notify a Telegram channel about every new attempt
"""

__version__ = "1.0.0"
__author__ = "Timus Notifier Team"

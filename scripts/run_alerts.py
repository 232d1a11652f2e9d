#!/usr/bin/env python3
"""Run the alert cron from a source checkout.

Usage::

    python scripts/run_alerts.py --config config/settings.yaml
"""

from __future__ import annotations

from stockly.cli import main

if __name__ == "__main__":
    main()

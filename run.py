#!/usr/bin/env python3
"""
Resource Quota Enforcer - Entry Point

Usage:
    python run.py controller [--workers N] [--dry-run] [--in-cluster]
    python run.py webhook [--tls-cert-file F] [--tls-key-file F] [--in-cluster]
"""

from quota_enforcer.run import main


if __name__ == "__main__":
    main()

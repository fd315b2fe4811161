#!/usr/bin/env python3
"""
Email Forwarding Setup Tool.

Entry point script for running the forwarding setup CLI.

Usage:
    python forward_setup.py [COMMAND] [OPTIONS]
    python forward_setup.py --help

Examples:
    # Preview a provisioning run (dry run)
    python forward_setup.py provision --forward-to me@example.org --dry-run

    # Provision every domain in domains.txt, DNS at Cloudflare
    python forward_setup.py provision --forward-to me@example.org --dns-host cloudflare --yes

    # Audit real configuration and export a CSV report
    python forward_setup.py audit --output audit.csv

    # Show stored progress without network calls
    python forward_setup.py status
"""

from forward_setup.cli import main

if __name__ == "__main__":
    main()

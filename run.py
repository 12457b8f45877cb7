#!/usr/bin/env python3
"""Backup runner for cron: 0 3 * * * /path/to/run.py"""
import os
import sys

from lampbackup.cli import cli

if __name__ == '__main__':
    # Default to a full backup run when called without arguments (crontab)
    args = sys.argv[1:] or ['run']
    cli.main(args=args, obj={}, prog_name=os.path.basename(sys.argv[0]))

#!/usr/bin/env python3
"""Backup runner, meant to be invoked from cron on every replica set member"""
from mongobackup.cli import cli

if __name__ == '__main__':
    cli()
